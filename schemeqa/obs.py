"""Tracing for the ask and ingestion paths.

Two optional backends, each a no-op when its package or configuration is
missing:
- Langfuse: one ``Trace`` per question, with retrieval/cache events, the model
  generation and a final summary. Enabled when the three LANGFUSE_* settings
  are present.
- OpenTelemetry: ``span(name, attributes)`` around retrieval, generation and
  ingestion runs. Spans go to the globally configured tracer provider; set
  OTEL_CONSOLE_EXPORT to install a console exporter for local debugging.

Backend failures are logged and never reach the request.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from schemeqa.config import settings

logger = logging.getLogger(__name__)

try:
    from langfuse import Langfuse
except ImportError:  # pragma: no cover
    Langfuse = None  # type: ignore

try:
    from opentelemetry import trace as otel_trace
except ImportError:  # pragma: no cover
    otel_trace = None  # type: ignore

_lock = threading.Lock()
_langfuse: Optional[Any] = None
_console_exporter_installed = False


def langfuse_client() -> Optional[Any]:
    """Shared Langfuse client, or None when tracing is not configured."""
    global _langfuse
    if Langfuse is None or not (
        settings.LANGFUSE_HOST and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY
    ):
        return None
    with _lock:
        if _langfuse is None:
            _langfuse = Langfuse(
                host=settings.LANGFUSE_HOST,
                public_key=settings.LANGFUSE_PUBLIC_KEY,
                secret_key=settings.LANGFUSE_SECRET_KEY,
            )
            logger.info("Langfuse tracing enabled (%s)", settings.LANGFUSE_HOST)
    return _langfuse


def _install_console_exporter() -> None:
    global _console_exporter_installed
    if _console_exporter_installed or not settings.OTEL_CONSOLE_EXPORT or otel_trace is None:
        return
    with _lock:
        if _console_exporter_installed:
            return
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

        provider = TracerProvider()
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        otel_trace.set_tracer_provider(provider)
        _console_exporter_installed = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
    """OpenTelemetry span named ``schemeqa.<name>``; None-valued attributes are dropped."""
    if otel_trace is None:
        yield
        return
    _install_console_exporter()
    tracer = otel_trace.get_tracer("schemeqa")
    attrs = {k: v for k, v in (attributes or {}).items() if v is not None}
    with tracer.start_as_current_span(f"schemeqa.{name}", attributes=attrs):
        yield


class Trace:
    """Langfuse trace for one request.

    Args:
        name: Trace name, e.g. ``"ask"``.
        input: Request payload recorded on the trace.
        client: Langfuse client; the shared configured client when omitted.
    """

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None, client: Optional[Any] = None):
        self.name = name
        self._trace = None
        client = client if client is not None else langfuse_client()
        if client is None:
            return
        try:
            self._trace = client.trace(name=name, input=input or {})
        except Exception as exc:
            logger.warning("Could not start Langfuse trace %s: %s", name, exc)

    @property
    def enabled(self) -> bool:
        return self._trace is not None

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._record("event", name=name, input=data or {})

    def generation(
        self,
        name: str,
        prompt: str,
        output: str,
        metadata: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> None:
        """Record one model call with its prompt and raw output."""
        self._record(
            "generation",
            name=name,
            input=prompt,
            output=output,
            metadata=metadata or {},
            model=model or settings.OPENAI_MODEL,
        )

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        self._record("update", output=output or {})

    def _record(self, method: str, **kwargs: Any) -> None:
        if self._trace is None:
            return
        try:
            getattr(self._trace, method)(**kwargs)
        except Exception as exc:
            logger.debug("Langfuse %s on trace %s failed: %s", method, self.name, exc)
