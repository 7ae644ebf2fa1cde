"""
Fan-out of booking change events to downstream consumers.

Consumers (task generation, notification dispatch) register a handler by
name. Each consumer gets its own single-worker executor: events reach one
consumer in the order they were published, and a slow or failing consumer
never delays or breaks delivery to the others.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Sequence

import structlog

from sync_ical.domain import ChangeEvent
from sync_ical.errors import PublishError
from sync_ical.metrics import change_event_deliveries

logger = structlog.get_logger(__name__)

ChangeEventHandler = Callable[[ChangeEvent], None]


class _ConsumerChannel:
    def __init__(self, name: str, handler: ChangeEventHandler) -> None:
        self.name = name
        self.handler = handler
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"consumer-{name}")

    def submit(self, events: Sequence[ChangeEvent]) -> Optional[Future]:
        return self._submit(self._deliver, list(events))

    def marker(self) -> Optional[Future]:
        """A no-op queued behind everything already submitted."""
        return self._submit(lambda: None)

    def _submit(self, fn: Callable[..., None], *args: object) -> Optional[Future]:
        try:
            return self.executor.submit(fn, *args)
        except RuntimeError:
            # Shut down by a concurrent unsubscribe() or close()
            logger.debug("change_event_consumer_gone", consumer=self.name)
            return None

    def _deliver(self, events: list[ChangeEvent]) -> None:
        for event in events:
            try:
                self.handler(event)
            except Exception as e:
                change_event_deliveries.labels(consumer=self.name, status="failure").inc()
                logger.exception(
                    "change_event_delivery_failed",
                    consumer=self.name,
                    kind=event.kind.value,
                    feed_id=event.booking.feed_id,
                    external_id=event.booking.external_id,
                    error=str(e),
                )
            else:
                change_event_deliveries.labels(consumer=self.name, status="success").inc()

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self.executor.shutdown(wait=wait_for_pending)


class ChangeEventPublisher:
    """
    Registry of change event consumers.

    Example:
        >>> publisher = ChangeEventPublisher()
        >>> publisher.subscribe("tasks", generate_turnover_tasks)
        >>> publisher.publish(reconciliation.events)
        >>> publisher.flush(timeout=30)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, _ConsumerChannel] = {}
        self._closed = False

    @property
    def consumers(self) -> list[str]:
        with self._lock:
            return sorted(self._channels)

    def subscribe(self, name: str, handler: ChangeEventHandler) -> None:
        """
        Register a consumer. Re-using a name replaces the previous handler.

        Args:
            name: Consumer name, used in logs and metrics
            handler: Called once per event on the consumer's own thread
        """
        with self._lock:
            if self._closed:
                raise PublishError("Publisher is closed")
            previous = self._channels.pop(name, None)
            self._channels[name] = _ConsumerChannel(name, handler)
        if previous:
            previous.shutdown()
        logger.info("change_event_consumer_registered", consumer=name)

    def unsubscribe(self, name: str) -> None:
        with self._lock:
            channel = self._channels.pop(name, None)
        if channel:
            channel.shutdown()

    def publish(self, events: Sequence[ChangeEvent]) -> None:
        """
        Queue events for every registered consumer and return immediately.

        Args:
            events: Change events in reconciliation order

        Raises:
            PublishError: The publisher has been closed
        """
        if not events:
            return
        with self._lock:
            if self._closed:
                raise PublishError("Publisher is closed")
            channels = list(self._channels.values())
        for channel in channels:
            channel.submit(events)
        logger.debug("change_events_published", count=len(events), consumers=len(channels))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until everything published so far has been handed to consumers.

        Args:
            timeout: Seconds to wait in total (None waits forever)

        Returns:
            bool: True if all consumers caught up within the timeout
        """
        with self._lock:
            channels = list(self._channels.values())
        markers = [m for m in (c.marker() for c in channels) if m is not None]
        _, pending = wait(markers, timeout=timeout)
        return not pending

    def close(self, wait_for_pending: bool = True) -> None:
        """Stop accepting events and shut down consumer threads."""
        with self._lock:
            self._closed = True
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.shutdown(wait_for_pending)


def log_change_event(event: ChangeEvent) -> None:
    """Consumer that writes every change event to the structured log."""
    logger.info(
        "booking_changed",
        kind=event.kind.value,
        feed_id=event.booking.feed_id,
        property_id=event.booking.property_id,
        external_id=event.booking.external_id,
        check_in=event.booking.check_in.isoformat(),
        check_out=event.booking.check_out.isoformat(),
        status=event.booking.status.value,
        previous=event.previous.to_dict() if event.previous else None,
    )


# Global publisher used by the poller and the API
publisher = ChangeEventPublisher()
