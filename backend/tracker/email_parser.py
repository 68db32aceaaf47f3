"""
Bank transaction alert email parsing.

This module classifies incoming emails and extracts card transactions from
bank alert emails. Each supported bank has a parser class exposing
``can_parse`` and ``parse``; an EmailParserRegistry holds them in order and
hands each email to the first parser that accepts it.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Pattern, Sequence

from .models import RawEmail

logger = logging.getLogger(__name__)

UNKNOWN_MERCHANT = "Unknown"

MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

AMOUNT_PATTERN = re.compile(r"(?:\bRs\.?|\bINR|₹)\s*(\d[\d,]*(?:\.\d{1,2})?)", re.I)

TRANSACTION_VERB_PATTERN = re.compile(
    r"\b(spent|debited|purchase|used|charged|transaction|txn|payment|paid|withdrawn|credited|received)\b",
    re.I,
)

CREDIT_PATTERN = re.compile(r"\b(credited|refund(?:ed)?|reversed|reversal)\b", re.I)
DEBIT_PATTERN = re.compile(r"\b(debited|spent|charged|used|purchase)\b", re.I)

TIME_PATTERN = re.compile(r"\b(\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AP]M)?)\b", re.I)

CARD_PATTERN = re.compile(
    r"(?:\bending\s*(?:with\s*)?|\bcard\s*)(\d{4})\b|X{2,}(\d{4})\b|\*{2,}(\d{4})\b", re.I
)

# "30 Jan, 2026"
DATE_TEXT_MONTH = r"(?P<day>\d{1,2})\s+(?P<month>[A-Za-z]{3,9}),?\s+(?P<year>\d{4})\b"
# "01-02-26", "31-Jan-26", "31.01.26", "31/01/2026"
DATE_SEPARATED = r"(?P<day>\d{1,2})[-/.](?P<month>\d{1,2}|[A-Za-z]{3})[-/.](?P<year>\d{2,4})\b"
# "31Jan26"
DATE_COMPACT = r"\b(?P<day>\d{1,2})(?P<month>[A-Za-z]{3})(?P<year>\d{2,4})\b"
# "Jan 31, 2026"
DATE_MONTH_FIRST = r"(?P<month>[A-Za-z]{3,9})\.?\s+(?P<day>\d{1,2}),?\s+(?P<year>\d{4})\b"

DEFAULT_DATE_PATTERNS = [
    re.compile(r"\b(?:on|dated)\s+" + DATE_SEPARATED, re.I),
    re.compile(r"\b(?:on|dated)\s+" + DATE_TEXT_MONTH, re.I),
    re.compile(r"\b(?:on|dated)\s+" + DATE_MONTH_FIRST, re.I),
    re.compile(DATE_SEPARATED, re.I),
    re.compile(DATE_TEXT_MONTH, re.I),
    re.compile(DATE_COMPACT, re.I),
]

# Terminators shared by merchant patterns: " on", " via", " dated", end of sentence.
MERCHANT_END = r"(?=\s+on\b|\s+via\b|\s+dated\b|\s+at\s+\d|\.(?:\s|$)|$)"
MERCHANT_NAME = r"(?P<merchant>(?!\d{1,2}:\d{2})[A-Z0-9][A-Za-z0-9\s&.',*/-]*?)"


def merchant_after(anchor: str) -> Pattern:
    return re.compile(anchor + r"\s+" + MERCHANT_NAME + MERCHANT_END, re.I)


class EmailCategory(str, Enum):
    TRANSACTION = "TRANSACTION"
    OTP = "OTP"
    PROMOTION = "PROMOTION"
    STATEMENT = "STATEMENT"
    REWARD_POINTS = "REWARD_POINTS"
    UNKNOWN = "UNKNOWN"


EXCLUDED_CATEGORIES = {
    EmailCategory.OTP,
    EmailCategory.PROMOTION,
    EmailCategory.STATEMENT,
    EmailCategory.REWARD_POINTS,
}

EXCLUSION_PATTERNS = [
    (
        EmailCategory.OTP,
        re.compile(
            r"\bOTP\b|one[\s-]?time[\s-]?password|verification\s*code|security\s*code",
            re.I,
        ),
    ),
    (EmailCategory.REWARD_POINTS, re.compile(r"reward\s*points?", re.I)),
    (
        EmailCategory.PROMOTION,
        re.compile(
            r"\bpromotional\b|special\s+offer|cashback\s+(?:offer|campaign)|limited\s+time|\bvoucher\b",
            re.I,
        ),
    ),
    (
        EmailCategory.STATEMENT,
        re.compile(
            r"\bstatement\b|bill\s+(?:is\s+)?generated|minimum\s+(?:amount\s+)?due|payment\s+due",
            re.I,
        ),
    ),
]

BANK_SENDER_PATTERNS = [
    ("ICICI", re.compile(r"@icicibank\.com", re.I)),
    ("HDFC", re.compile(r"@hdfcbank\.(?:com|net)", re.I)),
    ("SBI", re.compile(r"@sbi(?:card)?\.(?:co\.in|com)", re.I)),
    ("Axis", re.compile(r"@axisbank(?:mail)?\.com", re.I)),
    ("Kotak", re.compile(r"@kotak\.com", re.I)),
    ("IDFC", re.compile(r"@idfcfirstbank\.com", re.I)),
    ("Yes", re.compile(r"@yesbank\.in", re.I)),
    ("IndusInd", re.compile(r"@indusind\.com", re.I)),
]


class HTMLStripper(HTMLParser):
    """Collects visible text from HTML, skipping script and style blocks."""

    def __init__(self):
        super().__init__()
        self.text: List[str] = []
        self.skip = False

    def handle_starttag(self, tag, attrs):
        if tag in ("script", "style"):
            self.skip = True

    def handle_endtag(self, tag):
        if tag in ("script", "style"):
            self.skip = False

    def handle_data(self, data):
        if not self.skip:
            self.text.append(data)

    def get_text(self) -> str:
        return " ".join(" ".join(self.text).split())


def html_to_text(html: str) -> str:
    stripper = HTMLStripper()
    stripper.feed(html)
    stripper.close()
    return stripper.get_text()


def normalize_body(body: str) -> str:
    """Reduce an email body to single-spaced plain text."""
    if re.search(r"<[a-zA-Z/][^>]*>", body):
        body = html_to_text(body)
    return re.sub(r"\s+", " ", body).strip()


@dataclass(frozen=True)
class EmailClassification:
    category: EmailCategory
    bank_name: Optional[str] = None

    @property
    def is_excluded(self) -> bool:
        return self.category in EXCLUDED_CATEGORIES


def detect_bank(sender: str) -> Optional[str]:
    for bank_name, pattern in BANK_SENDER_PATTERNS:
        if pattern.search(sender):
            return bank_name
    return None


def classify_email(email: RawEmail) -> EmailClassification:
    """
    Classify an email from its subject, snippet and body.

    Exclusion categories (OTP, reward points, promotion, statement) win over
    any transaction wording in the same email.
    """
    text = " ".join([email.subject, email.snippet, normalize_body(email.body)])
    bank_name = detect_bank(email.sender)

    for category, pattern in EXCLUSION_PATTERNS:
        if pattern.search(text):
            return EmailClassification(category, bank_name)

    if TRANSACTION_VERB_PATTERN.search(text) and AMOUNT_PATTERN.search(text):
        return EmailClassification(EmailCategory.TRANSACTION, bank_name)
    return EmailClassification(EmailCategory.UNKNOWN, bank_name)


def build_date(day: str, month: str, year: str) -> Optional[date]:
    """
    Build a date from day, month and year tokens.

    The month may be numeric or a month name; two-digit years are read as
    20xx. Returns None for anything that is not a real calendar date.
    """
    if month.isdigit():
        month_number = int(month)
    else:
        prefix = month[:3].lower()
        if prefix not in MONTHS:
            return None
        month_number = MONTHS.index(prefix) + 1

    if len(year) == 2:
        year_number = 2000 + int(year)
    elif len(year) == 4:
        year_number = int(year)
    else:
        return None

    try:
        return date(year_number, month_number, int(day))
    except ValueError:
        return None


def parse_amount(raw: str) -> Optional[Decimal]:
    try:
        amount = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    return amount if amount > 0 else None


def _first_group(match: re.Match) -> Optional[str]:
    return next((group for group in match.groups() if group), None)


def clean_merchant(name: str) -> str:
    name = re.sub(r"\s+", " ", name).strip(" .,-")
    name = re.sub(r"^(?:on|POS|VPA|UPI)\s+", "", name, flags=re.I)
    return name or UNKNOWN_MERCHANT


@dataclass(frozen=True)
class ParsedEmail:
    """A transaction extracted from an alert email. Never persisted on its own."""

    amount: Decimal
    merchant_name: str
    bank_name: str
    transaction_type: str = "DEBIT"
    card_last4: Optional[str] = None
    transaction_date: Optional[date] = None
    transaction_time: Optional[str] = None
    message_id: str = ""
    email_subject: str = ""
    email_sender: str = ""
    received_date: Optional[datetime] = None


class BankEmailParser:
    """
    Base parser for card transaction alert emails.

    Subclasses describe a bank through class attributes: the sender pattern,
    the bank keyword pattern, and ordered lists of regexes for each field.
    ``can_parse`` requires both the sender and the keywords to match;
    ``parse`` applies the field regexes and returns None when no amount is
    found.
    """

    bank_name = "Generic"
    sender_pattern: Optional[Pattern] = None
    bank_keyword_pattern: Optional[Pattern] = None
    card_keyword_pattern: Pattern = re.compile(r"credit\s*card|\bcard\b", re.I)
    exclusion_pattern: Optional[Pattern] = None
    transaction_verb_pattern: Pattern = TRANSACTION_VERB_PATTERN
    amount_patterns: Sequence[Pattern] = (AMOUNT_PATTERN,)
    card_patterns: Sequence[Pattern] = (CARD_PATTERN,)
    merchant_patterns: Sequence[Pattern] = (merchant_after(r"\bat"),)
    date_patterns: Sequence[Pattern] = DEFAULT_DATE_PATTERNS

    def get_bank_name(self) -> str:
        return self.bank_name

    def _mentions(self, pattern: Optional[Pattern], email: RawEmail) -> bool:
        if pattern is None:
            return True
        return bool(pattern.search(email.subject) or pattern.search(email.body))

    def can_parse(self, email: RawEmail) -> bool:
        if self.sender_pattern is None or not self.sender_pattern.search(email.sender):
            return False
        return self._mentions(self.bank_keyword_pattern, email) and self._mentions(
            self.card_keyword_pattern, email
        )

    def parse(self, email: RawEmail) -> Optional[ParsedEmail]:
        """
        Extract a transaction from the email.

        Returns:
            ParsedEmail, or None for excluded emails, emails without a
            transaction verb, and emails without an amount
        """
        body = normalize_body(email.body)

        if classify_email(email).is_excluded:
            return None
        if self.exclusion_pattern is not None and self.exclusion_pattern.search(body):
            return None
        if not self.transaction_verb_pattern.search(body):
            return None

        amount = self.extract_amount(body)
        if amount is None:
            logger.debug("[%s parser] No amount found in: %s", self.bank_name, body[:100])
            return None

        return ParsedEmail(
            amount=amount,
            merchant_name=self.extract_merchant(body),
            bank_name=self.resolve_bank_name(email, body),
            transaction_type=self.transaction_type(body),
            card_last4=self.extract_card(body),
            transaction_date=self.extract_date(body),
            transaction_time=self.extract_time(body),
            message_id=email.message_id,
            email_subject=email.subject,
            email_sender=email.sender,
            received_date=email.received_date,
        )

    def extract_amount(self, body: str) -> Optional[Decimal]:
        for pattern in self.amount_patterns:
            match = pattern.search(body)
            if match:
                return parse_amount(match.group(1))
        return None

    def extract_card(self, body: str) -> Optional[str]:
        for pattern in self.card_patterns:
            match = pattern.search(body)
            if match:
                return _first_group(match)
        return None

    def extract_merchant(self, body: str) -> str:
        for pattern in self.merchant_patterns:
            match = pattern.search(body)
            if match:
                return clean_merchant(match.group("merchant"))
        return UNKNOWN_MERCHANT

    def extract_date(self, body: str) -> Optional[date]:
        for pattern in self.date_patterns:
            for match in pattern.finditer(body):
                parsed = build_date(match.group("day"), match.group("month"), match.group("year"))
                if parsed:
                    return parsed
        return None

    def extract_time(self, body: str) -> Optional[str]:
        match = TIME_PATTERN.search(body)
        return match.group(1) if match else None

    def transaction_type(self, body: str) -> str:
        if CREDIT_PATTERN.search(body) and not DEBIT_PATTERN.search(body):
            return "CREDIT"
        return "DEBIT"

    def resolve_bank_name(self, email: RawEmail, body: str) -> str:
        return self.bank_name


class IciciEmailParser(BankEmailParser):
    # "Your ICICI Bank Credit Card ending 1234 has been used for Rs 5,432.00 at AMAZON on 31-Jan-26"
    bank_name = "ICICI"
    sender_pattern = re.compile(r"@icicibank\.com", re.I)
    bank_keyword_pattern = re.compile(r"debited|transaction|spent|used", re.I)
    card_keyword_pattern = re.compile(r"credit\s*card", re.I)
    merchant_patterns = (
        merchant_after(r"\bat"),
        merchant_after(r"\bmerchant:"),
        merchant_after(r"\bpurchase\s+from"),
    )


class HdfcEmailParser(BankEmailParser):
    # "Rs.380.00 is debited from your HDFC Bank Credit Card ending 5712 towards MANISH SHOES on 30 Jan, 2026"
    bank_name = "HDFC"
    sender_pattern = re.compile(r"@hdfcbank\.(?:com|net)", re.I)
    bank_keyword_pattern = re.compile(r"HDFC", re.I)
    card_keyword_pattern = re.compile(r"credit\s*card", re.I)
    exclusion_pattern = re.compile(r"cashback.*campaign", re.I)
    transaction_verb_pattern = re.compile(r"\b(spent|debited|charged|used|transaction)\b", re.I)
    merchant_patterns = (merchant_after(r"\btowards"), merchant_after(r"\bat"))
    date_patterns = (
        re.compile(r"\bon\s+" + DATE_TEXT_MONTH, re.I),
        *DEFAULT_DATE_PATTERNS,
    )


class HdfcInstaAlertsParser(BankEmailParser):
    # "Rs 110.00 debited from HDFC Bank Credit Card **5241 to VPA shop.name@okaxis on 29-01-26"
    bank_name = "HDFC"
    sender_pattern = re.compile(r"InstaAlerts.*alerts@hdfcbank\.net", re.I)
    bank_keyword_pattern = re.compile(
        r"UPI\s+txn|UPI\s+transaction|debited|credited|withdrawn|transferred", re.I
    )
    card_keyword_pattern = re.compile(r"credit\s*card", re.I)
    account_pattern = re.compile(r"\ba/c\b|\baccount\b", re.I)
    amount_patterns = (re.compile(r"\bRs\.?\s*(\d[\d,]*(?:\.\d{1,2})?)", re.I),)
    card_patterns = (
        re.compile(r"credit\s*card\s*\*+(\d{4})", re.I),
        re.compile(r"credit\s*card\s*ending\s*(?:with\s*)?(\d{4})", re.I),
        re.compile(r"\bcard\b\s*\*+(\d{4})", re.I),
        re.compile(r"\bending\s*(?:with\s*)?(\d{4})\b", re.I),
    )
    vpa_pattern = re.compile(r"\bto\s+(?:VPA\s+)?([A-Za-z0-9._-]+)@[A-Za-z0-9.-]+", re.I)
    merchant_patterns = (
        merchant_after(r"\bto"),
        re.compile(r"\bfrom\s+" + MERCHANT_NAME + r"(?=\s+to\b|\.(?:\s|$)|$)", re.I),
    )

    def can_parse(self, email: RawEmail) -> bool:
        if not super().can_parse(email):
            return False
        return not self._mentions(self.account_pattern, email)

    def extract_merchant(self, body: str) -> str:
        match = self.vpa_pattern.search(body)
        if match:
            name = re.sub(r"[._-]+", " ", match.group(1)).strip()
            return " ".join(word.capitalize() for word in name.split()) or UNKNOWN_MERCHANT
        return super().extract_merchant(body)


class SbiEmailParser(BankEmailParser):
    # "Rs.110.00 spent on your SBI Credit Card ending with 0468 at BalajiBartanBhandar on 01-02-26"
    bank_name = "SBI"
    sender_pattern = re.compile(r"@sbi(?:card)?\.(?:co\.in|com)", re.I)
    bank_keyword_pattern = re.compile(r"\bSBI\b|State\s*Bank", re.I)
    exclusion_pattern = re.compile(r"flexipay.*emi|bill.*generated", re.I)
    merchant_patterns = (
        merchant_after(r"\bat"),
        merchant_after(r"\bon\s+POS"),
    )


class AxisEmailParser(BankEmailParser):
    # "Your Axis Bank Credit Card ending 2345 is debited with Rs.8,900.50 for a transaction at SWIGGY on 31-Jan-26"
    bank_name = "Axis"
    sender_pattern = re.compile(r"@axisbank(?:mail)?\.com", re.I)
    bank_keyword_pattern = re.compile(r"Axis\s*Bank|\bAxis\b", re.I)
    exclusion_pattern = re.compile(r"One-Time|special\s*offer", re.I)
    amount_patterns = (
        re.compile(r"Amount\s+Debited:\s*(?:Rs\.?|INR)\s*(\d[\d,]*(?:\.\d{1,2})?)", re.I),
        AMOUNT_PATTERN,
    )
    card_patterns = (
        re.compile(r"Account\s+Number:\s*X{2,}(\d{4})", re.I),
        CARD_PATTERN,
    )
    merchant_patterns = (
        re.compile(r"Transaction\s+Info:\s+UPI/[^/]+/[^/]+/(?P<merchant>[A-Z][A-Za-z0-9\s&.-]*?)(?=\s{2,}|\s+Date\b|$)", re.I),
        merchant_after(r"\bat"),
    )


class GenericEmailParser(BankEmailParser):
    """Fallback for banks without a dedicated parser."""

    bank_name = "Generic"
    known_banks_pattern = re.compile(r"(ICICI|HDFC|SBI|State\s*Bank|Axis|Kotak|IndusInd|IDFC)", re.I)
    card_keyword_pattern = re.compile(r"credit\s*card", re.I)
    generic_verb_pattern = re.compile(r"debited|transaction|spent|used|charged|purchase", re.I)
    card_patterns = (
        re.compile(r"(?:\bending|\blast|X{2,})\s*(\d{4})\b", re.I),
        CARD_PATTERN,
    )
    merchant_patterns = (
        merchant_after(r"\bat"),
        merchant_after(r"\bmerchant:"),
        merchant_after(r"\btransaction\s+at"),
        merchant_after(r"\bpurchase\s+from"),
    )

    def can_parse(self, email: RawEmail) -> bool:
        return (
            self._mentions(self.card_keyword_pattern, email)
            and bool(self.generic_verb_pattern.search(email.body))
            and bool(AMOUNT_PATTERN.search(email.body))
        )

    def resolve_bank_name(self, email: RawEmail, body: str) -> str:
        match = self.known_banks_pattern.search(f"{email.sender} {body}")
        if not match:
            return "Unknown"
        name = re.sub(r"\s+", " ", match.group(1)).upper()
        return "SBI" if name == "STATE BANK" else name


class EmailParserRegistry:
    """
    Ordered collection of bank parsers.

    Parsers are tried in registration order and the first whose
    ``can_parse`` accepts the email handles it.
    """

    def __init__(self, parsers: Optional[Iterable[BankEmailParser]] = None):
        self.parsers: List[BankEmailParser] = list(parsers or [])

    def register(self, parser: BankEmailParser) -> None:
        self.parsers.append(parser)

    def find_parser(self, email: RawEmail) -> Optional[BankEmailParser]:
        return next((parser for parser in self.parsers if parser.can_parse(email)), None)

    def parse(self, email: RawEmail) -> Optional[ParsedEmail]:
        if classify_email(email).is_excluded:
            return None
        parser = self.find_parser(email)
        if parser is None:
            return None
        return parser.parse(email)

    def supported_banks(self) -> List[str]:
        names: List[str] = []
        for parser in self.parsers:
            if parser.get_bank_name() not in names:
                names.append(parser.get_bank_name())
        return names


def default_registry() -> EmailParserRegistry:
    """Registry with every bundled parser, generic fallback last."""
    return EmailParserRegistry(
        [
            IciciEmailParser(),
            HdfcInstaAlertsParser(),
            HdfcEmailParser(),
            SbiEmailParser(),
            AxisEmailParser(),
            GenericEmailParser(),
        ]
    )
