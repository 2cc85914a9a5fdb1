"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from dental_agent.services.metrics import MetricsClient


def _dims(point: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in point["Dimensions"]}


class TestMetricsRecording:
    """Verify that record_success / record_failure buffer the right data."""

    def _make_client(self) -> MetricsClient:
        return MetricsClient(enabled=False)

    def test_record_success_appends_count_and_latency(self):
        client = self._make_client()
        client.record_success("google_calendar", "events.insert", latency_ms=123.4)
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/Latency"}

    def test_record_failure_without_latency(self):
        client = self._make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="timeout")
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/ErrorCount"}

    def test_record_failure_with_latency(self):
        client = self._make_client()
        client.record_failure("ses", "send_email", error_type="Throttling", latency_ms=500.0)
        assert client.pending() == 3

    def test_dimensions(self):
        client = self._make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="BadRequestError")
        error_metric = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/ErrorCount")
        assert _dims(error_metric) == {"Service": "anthropic", "ErrorType": "BadRequestError"}


class TestTrack:
    def test_success_is_recorded(self):
        client = MetricsClient(enabled=False)
        with client.track("google_calendar", "events.delete"):
            pass
        count = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/RequestCount")
        assert _dims(count)["Status"] == "success"

    def test_failure_is_recorded_and_reraised(self):
        client = MetricsClient(enabled=False)
        with pytest.raises(KeyError):
            with client.track("ses", "send_email"):
                raise KeyError("boom")
        error = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/ErrorCount")
        assert _dims(error)["ErrorType"] == "KeyError"


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_enabled_flag_comes_from_environment(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            assert MetricsClient()._enabled is False

    def test_flush_when_disabled_sends_nothing_and_clears(self):
        client = MetricsClient(enabled=False)
        client.record_success("ses", "send_email", latency_ms=100.0)
        assert client.flush() == 0
        assert client.pending() == 0

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("google_calendar", "events.insert", latency_ms=100.0)
        assert client.flush() == 2
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "DentalAgent"
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_empty_buffer_returns_zero(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        assert client.flush() == 0
