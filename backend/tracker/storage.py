# Document storage for the productivity tracker application
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel

from .config import get_settings
from .models import UserSettings

logger = logging.getLogger(__name__)

DATA_DIR: Path = get_settings().data_dir

ModelT = TypeVar("ModelT", bound=BaseModel)

# Collection names
HABITS = "habits"
TRANSACTIONS = "transactions"
BUDGETS = "budgets"
PROCESSED_EMAILS = "processed_emails"
TRANSACTION_HASHES = "transaction_hashes"
EMAIL_CONNECTIONS = "email_connections"
SETTINGS = "settings"
CREDIT_CARDS = "credit_cards"
RECURRING = "recurring_transactions"


def collection_path(name: str) -> Path:
    return DATA_DIR / f"{name}.json"


def load_collection(name: str) -> List[Dict]:
    """Load a collection from file"""
    path = collection_path(name)
    if path.exists():
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning("Collection file %s is corrupt, reading as empty", path)
            return []
        return data if isinstance(data, list) else []
    return []


def save_collection(name: str, docs: List[Dict]):
    """Save a collection to file"""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    with open(collection_path(name), "w") as f:
        json.dump(docs, f, indent=2)


def load_documents(name: str, model: Type[ModelT]) -> List[ModelT]:
    return [model.model_validate(doc) for doc in load_collection(name)]


def save_documents(name: str, docs: Iterable[BaseModel]):
    save_collection(name, [doc.model_dump(mode="json") for doc in docs])


def insert_document(name: str, doc: BaseModel):
    docs = load_collection(name)
    docs.append(doc.model_dump(mode="json"))
    save_collection(name, docs)


def find_document(name: str, model: Type[ModelT], doc_id: str) -> Optional[ModelT]:
    for doc in load_collection(name):
        if doc.get("id") == doc_id:
            return model.model_validate(doc)
    return None


def replace_document(name: str, doc: BaseModel, key: str = "id") -> bool:
    """Replace the stored document whose ``key`` matches, returning False if absent."""
    docs = load_collection(name)
    value = getattr(doc, key)
    for idx, existing in enumerate(docs):
        if existing.get(key) == value:
            docs[idx] = doc.model_dump(mode="json")
            save_collection(name, docs)
            return True
    return False


def delete_documents(name: str, key: str, value: Any) -> int:
    """Delete every document whose ``key`` equals ``value``; returns the count removed."""
    docs = load_collection(name)
    kept = [doc for doc in docs if doc.get(key) != value]
    removed = len(docs) - len(kept)
    if removed:
        save_collection(name, kept)
    return removed


def load_object(name: str) -> Optional[Dict]:
    path = collection_path(name)
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Object file %s is corrupt, reading as missing", path)
        return None
    return data if isinstance(data, dict) else None


def save_object(name: str, obj: BaseModel):
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    with open(collection_path(name), "w") as f:
        json.dump(obj.model_dump(mode="json"), f, indent=2)


def load_user_settings() -> UserSettings:
    data = load_object(SETTINGS)
    return UserSettings.model_validate(data) if data else UserSettings()


def save_user_settings(settings: UserSettings):
    save_object(SETTINGS, settings)
