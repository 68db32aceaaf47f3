"""
Langfuse tracing integration for the tracker.

This module provides utilities to trace email processing runs and the
parse of each email for monitoring and debugging the bank parsers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from langfuse import Langfuse
from langfuse.types import TraceContext

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class TraceHandle:
    """Lightweight wrapper for Langfuse trace context."""

    client: Any
    trace_context: TraceContext
    root_span: Optional[object] = None


class LangfuseTracer:
    """Wrapper for the Langfuse client, enabled when a public key is configured."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.enabled = settings.langfuse_public_key is not None
        self.client = None

        if self.enabled:
            try:
                self.client = Langfuse(
                    public_key=settings.langfuse_public_key,
                    secret_key=settings.langfuse_secret_key,
                    host=settings.langfuse_host,
                )
                logger.info("Langfuse client initialized with host: %s", settings.langfuse_host)
            except Exception:
                logger.warning("Failed to initialize Langfuse", exc_info=True)
                self.enabled = False

    def is_enabled(self) -> bool:
        """Check if Langfuse tracing is enabled and available."""
        return self.enabled

    def create_trace(
        self,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TraceHandle]:
        """
        Create a new trace for monitoring an operation.

        Args:
            name: Name of the operation (e.g., "process_emails")
            metadata: Optional metadata dictionary

        Returns:
            TraceHandle or None if tracing is disabled
        """
        if not self.enabled or not self.client:
            return None

        try:
            trace_id = self.client.create_trace_id()
            trace_context = TraceContext(trace_id=trace_id)
            root_span = self.client.start_span(
                trace_context=trace_context,
                name=name,
                metadata=metadata or {},
            )
            logger.debug("Created trace: %s (ID: %s)", name, trace_id)
            return TraceHandle(
                client=self.client, trace_context=trace_context, root_span=root_span
            )
        except Exception:
            logger.warning("Failed to create trace %s", name, exc_info=True)
            return None

    def add_span(
        self,
        trace: Optional[TraceHandle],
        name: str,
        input_text: Optional[str] = None,
        output_text: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log a span to the trace.

        Args:
            trace: Trace handle from create_trace()
            name: Name of the span (e.g., "parse_email")
            input_text: Optional input data
            output_text: Optional output data
            metadata: Optional additional metadata
        """
        if not trace or not self.client:
            return

        try:
            span = self.client.start_span(
                trace_context=trace.trace_context,
                name=name,
                input=input_text or "",
                metadata=metadata or {},
            )
            if output_text:
                span.update(output=output_text)
            span.end()
        except Exception:
            logger.warning("Failed to add span %s to trace", name, exc_info=True)

    def end_trace(self, trace: Optional[TraceHandle], output: Optional[Dict[str, Any]] = None) -> None:
        """Close the root span and flush so all events are sent."""
        if not trace:
            return
        try:
            if trace.root_span is not None:
                if output:
                    trace.root_span.update(output=output)
                trace.root_span.end()
                trace.root_span = None
            if self.client:
                self.client.flush()
        except Exception:
            logger.warning("Failed to end trace", exc_info=True)


# Global instance
_tracer = None


def get_tracer() -> LangfuseTracer:
    """Get or create the global Langfuse tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = LangfuseTracer()
    return _tracer


def initialize_tracing():
    """Initialize Langfuse tracing (call this at app startup)."""
    tracer = get_tracer()
    if tracer.is_enabled():
        logger.info("Langfuse tracing enabled")
    else:
        logger.info("Langfuse tracing disabled (set LANGFUSE_PUBLIC_KEY to enable)")
