"""
MLflow tracing for audit runs.
Spans cover layer 1 collection, layer 3 micro-audits and individual provider calls.
With MLFLOW_ENABLE_TRACING off every method is a no-op.
"""
import logging
import time
from typing import Optional, Dict, Any
from contextlib import contextmanager

import mlflow

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _set_on_active_span(attributes: Dict[str, Any]):
    try:
        current_span = mlflow.get_current_active_span()
        if current_span:
            current_span.set_attributes(attributes)
    except AttributeError:
        # Older MLflow releases have no get_current_active_span
        pass


class MLflowTracer:
    """Handles MLflow tracing for audit observability."""

    def __init__(self):
        self.enabled = settings.MLFLOW_ENABLE_TRACING
        if self.enabled:
            try:
                mlflow.set_tracking_uri(settings.MLFLOW_TRACKING_URI)
                logger.info("MLflow tracing enabled")
            except Exception as e:
                logger.warning(f"Failed to initialize MLflow tracing: {e}")
                self.enabled = False

    @contextmanager
    def span(
        self,
        name: str,
        span_type: str = "UNKNOWN",
        attributes: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None
    ):
        """
        Create a traced span for an operation.

        Args:
            name: Name of the span (e.g., "layer1.collect", "provider.generate")
            span_type: Type of span (e.g., "LLM", "RETRIEVER", "CHAIN")
            attributes: Additional metadata for the span
            inputs: Input data to the operation
        """
        if not self.enabled:
            yield None
            return

        with mlflow.start_span(name=name, span_type=span_type) as span:
            if attributes:
                span.set_attributes(attributes)
            if inputs:
                span.set_inputs(inputs)

            start_time = time.time()
            yield span
            elapsed = time.time() - start_time
            span.set_attribute("latency_ms", int(elapsed * 1000))

    def trace_llm_call(
        self,
        model: str,
        prompt: str,
        tokens: Optional[Dict[str, int]] = None
    ):
        """Attach model/prompt/token details to the current span."""
        if not self.enabled:
            return

        attributes: Dict[str, Any] = {
            "model": model,
            "prompt_length": len(prompt),
        }
        if tokens:
            attributes.update(tokens)
        _set_on_active_span(attributes)

    def trace_collection(
        self,
        url: str,
        error_count: int,
        gap_count: int,
        duration_ms: int
    ):
        """Attach layer 1 outcome counters to the current span."""
        if not self.enabled:
            return

        _set_on_active_span({
            "url": url,
            "error_count": error_count,
            "gap_count": gap_count,
            "duration_ms": duration_ms,
        })

    def trace_audits(
        self,
        completed: list,
        failed: list,
        finding_count: int,
        total_cost: float
    ):
        """Attach layer 3 outcome counters to the current span."""
        if not self.enabled:
            return

        attributes: Dict[str, Any] = {
            "completed_count": len(completed),
            "failed_count": len(failed),
            "finding_count": finding_count,
            "total_cost": total_cost,
        }
        if failed:
            attributes["failed_audits"] = ",".join(failed)
        _set_on_active_span(attributes)


# Global tracer instance
tracer = MLflowTracer()
