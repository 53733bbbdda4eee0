"""Tests for MLflow tracing functionality."""
import pytest
from unittest.mock import Mock, patch
from hybrid_audit.mlops.tracing import MLflowTracer


@pytest.fixture
def mock_settings_enabled():
    """Mock settings with tracing enabled."""
    with patch('hybrid_audit.mlops.tracing.settings') as mock:
        mock.MLFLOW_ENABLE_TRACING = True
        mock.MLFLOW_TRACKING_URI = "http://localhost:5000"
        yield mock


@pytest.fixture
def mock_settings_disabled():
    """Mock settings with tracing disabled."""
    with patch('hybrid_audit.mlops.tracing.settings') as mock:
        mock.MLFLOW_ENABLE_TRACING = False
        yield mock


class TestMLflowTracerEnabled:
    """Tests for MLflowTracer when enabled."""

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_tracer_initialization_enabled(self, mock_mlflow, mock_settings_enabled):
        tracer = MLflowTracer()

        assert tracer.enabled is True
        mock_mlflow.set_tracking_uri.assert_called_once_with("http://localhost:5000")

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_tracer_disables_itself_when_setup_fails(self, mock_mlflow, mock_settings_enabled):
        mock_mlflow.set_tracking_uri.side_effect = RuntimeError("bad uri")

        tracer = MLflowTracer()

        assert tracer.enabled is False

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_span_creation(self, mock_mlflow, mock_settings_enabled):
        """Test span is created with the name, type, attributes and inputs."""
        tracer = MLflowTracer()

        mock_span = Mock()
        mock_mlflow.start_span.return_value.__enter__.return_value = mock_span

        with tracer.span("audit.run", "CHAIN", {"audit_id": "a1"}, {"url": "https://acme.test/"}) as span:
            assert span is mock_span

        call_kwargs = mock_mlflow.start_span.call_args[1]
        assert call_kwargs['name'] == "audit.run"
        assert call_kwargs['span_type'] == "CHAIN"
        mock_span.set_attributes.assert_called_once_with({"audit_id": "a1"})
        mock_span.set_inputs.assert_called_once_with({"url": "https://acme.test/"})

    @patch('hybrid_audit.mlops.tracing.mlflow')
    @patch('hybrid_audit.mlops.tracing.time')
    def test_span_tracks_latency(self, mock_time, mock_mlflow, mock_settings_enabled):
        tracer = MLflowTracer()

        mock_span = Mock()
        mock_mlflow.start_span.return_value.__enter__.return_value = mock_span
        mock_time.time.side_effect = [1000.0, 1001.5]

        with tracer.span("layer1.collect", "RETRIEVER"):
            pass

        mock_span.set_attribute.assert_called_once_with("latency_ms", 1500)

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_trace_llm_call(self, mock_mlflow, mock_settings_enabled):
        tracer = MLflowTracer()
        mock_span = Mock()
        mock_mlflow.get_current_active_span.return_value = mock_span

        tracer.trace_llm_call(model="gpt-4o", prompt="Audit this page", tokens={"total_tokens": 150})

        mock_span.set_attributes.assert_called_once_with({
            "model": "gpt-4o",
            "prompt_length": 15,
            "total_tokens": 150,
        })

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_trace_audits_lists_failures(self, mock_mlflow, mock_settings_enabled):
        tracer = MLflowTracer()
        mock_span = Mock()
        mock_mlflow.get_current_active_span.return_value = mock_span

        tracer.trace_audits(completed=["technical-seo"], failed=["performance", "pdp"], finding_count=4, total_cost=0.01)

        attributes = mock_span.set_attributes.call_args[0][0]
        assert attributes["completed_count"] == 1
        assert attributes["failed_count"] == 2
        assert attributes["failed_audits"] == "performance,pdp"

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_trace_collection_without_active_span(self, mock_mlflow, mock_settings_enabled):
        tracer = MLflowTracer()
        mock_mlflow.get_current_active_span.return_value = None

        # must not raise
        tracer.trace_collection(url="https://acme.test/", error_count=0, gap_count=1, duration_ms=120)


class TestMLflowTracerDisabled:
    """Tests for MLflowTracer when disabled."""

    @patch('hybrid_audit.mlops.tracing.mlflow')
    def test_disabled_tracer_is_a_no_op(self, mock_mlflow, mock_settings_disabled):
        tracer = MLflowTracer()

        with tracer.span("audit.run") as span:
            assert span is None
        tracer.trace_llm_call(model="gpt-4o", prompt="x")
        tracer.trace_audits(completed=[], failed=[], finding_count=0, total_cost=0.0)

        assert tracer.enabled is False
        mock_mlflow.set_tracking_uri.assert_not_called()
        mock_mlflow.start_span.assert_not_called()
        mock_mlflow.get_current_active_span.assert_not_called()
