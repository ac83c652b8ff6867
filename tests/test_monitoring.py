"""Tests for metric helpers, Sentry scrubbing and log masking."""

from __future__ import annotations

from prometheus_client import REGISTRY

from src.mombot.api.middleware.logging import _mask_secrets
from src.mombot.core.monitoring import _scrub_event, record_graph_response


def _graph_count(status_class: str) -> float:
    return REGISTRY.get_sample_value("graph_responses_total", {"status_class": status_class}) or 0.0


class TestGraphResponseMetric:
    def test_status_codes_grouped_by_class(self):
        before_ok = _graph_count("2xx")
        before_missing = _graph_count("4xx")

        record_graph_response(200)
        record_graph_response(204)
        record_graph_response(404)

        assert _graph_count("2xx") == before_ok + 2
        assert _graph_count("4xx") == before_missing + 1


class TestSentryScrubbing:
    def test_authorization_and_cookie_filtered(self):
        event = {
            "request": {
                "headers": {"Authorization": "Bearer user-token", "Cookie": "a=b", "Accept": "text/vtt"},
            }
        }

        scrubbed = _scrub_event(event, {})

        headers = scrubbed["request"]["headers"]
        assert headers["Authorization"] == "[Filtered]"
        assert headers["Cookie"] == "[Filtered]"
        assert headers["Accept"] == "text/vtt"

    def test_oauth_callback_query_filtered(self):
        event = {"request": {"query_string": "code=abc&state=xyz"}}

        assert _scrub_event(event, {})["request"]["query_string"] == "[Filtered]"

    def test_event_without_request_untouched(self):
        event = {"message": "transcript.fetch_failed"}

        assert _scrub_event(event, {}) == {"message": "transcript.fetch_failed"}


class TestLogMasking:
    def test_token_fields_masked(self):
        event = {"event": "auth.tokens_issued", "access_token": "at", "refresh_token": "rt", "user_id": "u-1"}

        masked = _mask_secrets(None, "info", event)

        assert masked["access_token"] == "***"
        assert masked["refresh_token"] == "***"
        assert masked["user_id"] == "u-1"

    def test_empty_values_left_alone(self):
        masked = _mask_secrets(None, "info", {"event": "auth.refresh", "refresh_token": None})

        assert masked["refresh_token"] is None
