"""Outbound recent-changes feeds."""

import requests

from .logger import get_logger
from .retry import CircuitBreaker, CircuitOpenError, RetryError, exponential_backoff, should_retry_http_status


class FeedDeliveryError(Exception):
    """Raised for a retryable HTTP status from the feed endpoint."""
    pass


class WebhookRCFeed:
    """
    POSTs batches of categorize changes as JSON to a webhook.

    Delivery is best effort: failures are logged and counted, never raised
    into the job, since the changes are already committed.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        breaker: CircuitBreaker | None = None,
        logger=None,
    ):
        self.url = url
        self.timeout = timeout
        self.logger = logger or get_logger()
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._post = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, FeedDeliveryError),
            on_retry=self._on_retry,
        )(self._post_once)

    def _post_once(self, entries: list):
        resp = requests.post(self.url, json={"changes": entries}, timeout=self.timeout)
        if should_retry_http_status(resp.status_code):
            raise FeedDeliveryError(f"Feed endpoint returned {resp.status_code}")
        resp.raise_for_status()
        return resp

    def _on_retry(self, attempt, exception, delay):
        self.logger.warning("Retrying feed delivery", url=self.url, attempt=attempt, delay=delay, error=str(exception))

    def send(self, entries: list) -> bool:
        if not entries:
            return True
        try:
            self.breaker.call(self._post, entries)
        except CircuitOpenError as e:
            self.logger.warning("Feed delivery skipped", url=self.url, error=str(e), count=len(entries))
            self.logger.record_feed_delivery(False)
            return False
        except (RetryError, requests.exceptions.RequestException) as e:
            self.logger.error("Feed delivery failed", url=self.url, error=str(e), count=len(entries))
            self.logger.record_feed_delivery(False)
            self.logger.record_error(type(e).__name__)
            return False
        self.logger.debug("Feed delivered", url=self.url, count=len(entries))
        self.logger.record_feed_delivery(True)
        return True
