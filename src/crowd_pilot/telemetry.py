"""OpenTelemetry tracing for the serializer.

Spans cover one session replay, one finalize call and one batch run; the
finalize span carries one event per emitted chunk.
Tracing is a no-op unless an exporter is configured (``--trace`` on the CLI
or ``CROWD_PILOT_TRACE_EXPORTER``).
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TelemetryConfig:
    """Configuration for serializer tracing."""

    service_name: str = "crowd-pilot"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        """Read ``CROWD_PILOT_TRACE_EXPORTER`` and ``CROWD_PILOT_OTLP_ENDPOINT``."""
        config = cls()
        exporter = os.environ.get("CROWD_PILOT_TRACE_EXPORTER")
        if exporter:
            config.exporter = exporter.strip().lower()
        endpoint = os.environ.get("CROWD_PILOT_OTLP_ENDPOINT")
        if endpoint:
            config.otlp_endpoint = endpoint.strip()
        return config


# ---------------------------------------------------------------------------
# SerializerTracer
# ---------------------------------------------------------------------------


class SerializerTracer:
    """Wraps ``TracerProvider`` setup and span helpers."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    # -- lifecycle -----------------------------------------------------------

    def init(self) -> None:
        """Set up the OTel TracerProvider based on config."""
        cfg = self._config

        if not cfg.enabled or cfg.exporter == "none":
            return

        resource = Resource.create({"service.name": cfg.service_name})

        if cfg.exporter == "stdout":
            from opentelemetry.sdk.trace.export import (
                ConsoleSpanExporter,
                SimpleSpanProcessor,
            )

            provider = TracerProvider(resource=resource)
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

        elif cfg.exporter == "otlp":
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                    OTLPSpanExporter,
                )
                from opentelemetry.sdk.trace.export import BatchSpanProcessor
            except ImportError:  # pragma: no cover
                # Without the OTLP exporter package tracing stays a no-op.
                return

            exporter = OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
            provider = TracerProvider(resource=resource)
            provider.add_span_processor(BatchSpanProcessor(exporter))
            self._provider = provider
            self._tracer = provider.get_tracer(cfg.service_name)

        else:
            msg = f"Unknown trace exporter: {cfg.exporter}"
            raise ValueError(msg)

    # -- span helpers --------------------------------------------------------

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a span as a context manager."""
        with self._tracer.start_as_current_span(name) as s:
            if attributes:
                for k, v in attributes.items():
                    s.set_attribute(k, v)
            yield s

    def record_event(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Record a named event on the current active span (if any)."""
        current_span = trace.get_current_span()
        if current_span.is_recording():
            current_span.add_event(name, dict(attributes) if attributes else {})

    def shutdown(self) -> None:
        """Flush pending spans and shut down the provider.

        Safe to call multiple times.
        """
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None


# ---------------------------------------------------------------------------
# Module-level singleton (lazily initialised)
# ---------------------------------------------------------------------------

_DEFAULT_TRACER: SerializerTracer | None = None


def _get_default_tracer() -> SerializerTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = SerializerTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> SerializerTracer:
    """Replace the default tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    tracer = SerializerTracer(config)
    tracer.init()
    _DEFAULT_TRACER = tracer
    return tracer


def shutdown_tracing() -> None:
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()


# ---------------------------------------------------------------------------
# Convenience context managers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_session(session_id: str) -> Generator[Span, None, None]:
    """Trace the replay of one recorded session."""
    with _get_default_tracer().span("serializer/session", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_finalize(session_id: str) -> Generator[Span, None, None]:
    """Trace a finalize call (flush plus chunking)."""
    with _get_default_tracer().span("serializer/finalize", {"session.id": session_id}) as s:
        yield s


def record_event(name: str, attributes: dict[str, Any] | None = None) -> None:
    """Record *name* on the span that is current for the default tracer."""
    _get_default_tracer().record_event(name, attributes)


@contextlib.contextmanager
def trace_batch(input_dir: str, workers: int) -> Generator[Span, None, None]:
    """Trace a whole preprocessing run."""
    attributes = {"batch.input_dir": input_dir, "batch.workers": workers}
    with _get_default_tracer().span("serializer/batch", attributes) as s:
        yield s
