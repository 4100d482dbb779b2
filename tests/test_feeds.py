"""
Tests for feeds.py - webhook delivery with retries and a circuit breaker.
"""

import pytest
import requests

from categorysync import feeds
from categorysync.feeds import WebhookRCFeed
from categorysync.retry import CircuitBreaker

ENTRIES = [{"id": 1, "type": "categorize", "title": "Birds"}]


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


@pytest.fixture
def post_calls(monkeypatch):
    """Replace requests.post; set ``post_calls.responses`` to script replies."""
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        reply = fake_post.responses.pop(0) if fake_post.responses else 200
        if isinstance(reply, Exception):
            raise reply
        return FakeResponse(reply)

    fake_post.responses = []
    fake_post.calls = calls
    monkeypatch.setattr(feeds.requests, "post", fake_post)
    return fake_post


def make_feed(logger, **kwargs):
    kwargs.setdefault("base_delay", 0)
    return WebhookRCFeed("https://rc.example.org/hook", logger=logger, **kwargs)


class TestWebhookRCFeed:
    def test_successful_delivery(self, post_calls, logger):
        feed = make_feed(logger, timeout=2.5)

        assert feed.send(ENTRIES)

        assert post_calls.calls == [
            {"url": "https://rc.example.org/hook", "json": {"changes": ENTRIES}, "timeout": 2.5}
        ]
        assert logger.metrics["feed_deliveries"] == 1

    def test_empty_batch_is_not_posted(self, post_calls, logger):
        assert make_feed(logger).send([])
        assert post_calls.calls == []

    def test_retries_on_server_error(self, post_calls, logger):
        post_calls.responses = [503, 200]

        assert make_feed(logger, max_retries=2).send(ENTRIES)
        assert len(post_calls.calls) == 2

    def test_retries_on_connection_error(self, post_calls, logger):
        post_calls.responses = [requests.exceptions.ConnectionError("refused"), 200]

        assert make_feed(logger, max_retries=1).send(ENTRIES)
        assert len(post_calls.calls) == 2

    def test_gives_up_after_retries(self, post_calls, logger):
        post_calls.responses = [500, 502, 504]

        assert not make_feed(logger, max_retries=1).send(ENTRIES)

        assert len(post_calls.calls) == 2
        assert logger.metrics["feed_failures"] == 1
        assert logger.metrics["errors_by_type"]["RetryError"] == 1

    def test_client_error_is_not_retried(self, post_calls, logger):
        post_calls.responses = [404]

        assert not make_feed(logger, max_retries=3).send(ENTRIES)

        assert len(post_calls.calls) == 1
        assert logger.metrics["errors_by_type"]["HTTPError"] == 1

    def test_open_circuit_skips_delivery(self, post_calls, logger):
        post_calls.responses = [500]
        feed = make_feed(logger, max_retries=0, breaker=CircuitBreaker(failure_threshold=1, recovery_timeout=60))

        assert not feed.send(ENTRIES)
        assert not feed.send(ENTRIES)

        assert len(post_calls.calls) == 1
        assert feed.breaker.state == CircuitBreaker.OPEN
        assert logger.metrics["feed_failures"] == 2
