from unittest.mock import Mock

from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export import SpanExportResult

from corsproxy.server import FilteringSpanExporter, app


def make_span(attributes):
    span = Mock()
    span.attributes = attributes
    return span


class TestFilteringSpanExporter:
    def test_body_spans_are_dropped(self):
        inner = Mock()
        inner.export.return_value = SpanExportResult.SUCCESS
        exporter = FilteringSpanExporter(inner)

        keep = make_span({"http.route": "/{path:path}"})
        body = make_span({"asgi.event.type": "http.response.body"})
        no_attrs = make_span(None)

        assert exporter.export([keep, body, no_attrs]) == SpanExportResult.SUCCESS
        inner.export.assert_called_once_with([keep, no_attrs])

    def test_nothing_left_to_export(self):
        inner = Mock()
        exporter = FilteringSpanExporter(inner)

        result = exporter.export([make_span({"asgi.event.type": "http.response.body"})])

        assert result == SpanExportResult.SUCCESS
        inner.export.assert_not_called()

    def test_shutdown_and_flush_are_delegated(self):
        inner = Mock()
        exporter = FilteringSpanExporter(inner)
        exporter.shutdown()
        exporter.force_flush(100)
        inner.shutdown.assert_called_once()
        inner.force_flush.assert_called_once_with(100)


class TestApp:
    def test_metrics_endpoint(self):
        response = TestClient(app).get("/metrics")
        assert response.status_code == 200
        assert "fastapi_app_info" in response.text

    def test_state_is_configured(self):
        assert app.state.proxy_config is not None
        assert app.state.forwarding_engine is not None
