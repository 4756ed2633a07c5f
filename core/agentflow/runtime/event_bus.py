"""
Event Bus - Pub/sub for run lifecycle events.

Runners publish flow, node and LLM events; testing panels, CLIs and
history recorders subscribe. A failing subscriber is logged and never
affects the run that published the event.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events a run publishes."""

    # Flow lifecycle
    FLOW_STARTED = "flow-started"
    FLOW_FINISHED = "flow-finished"
    FLOW_PAUSED = "flow-paused"
    FLOW_RESUMED = "flow-resumed"

    # Node lifecycle
    NODE_STARTED = "node-started"
    NODE_FINISHED = "node-finished"
    NODE_ERROR = "node-error"
    NODE_SKIPPED = "node-skipped"

    # LLM observability
    LLM_REQUEST = "llm-request"
    LLM_RESPONSE = "llm-response"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FlowEvent:
    """An event emitted during a run."""

    type: EventType
    run_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    at: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        """Flattened form: ``{type, at, runId, nodeId, **data}``."""
        payload: dict[str, Any] = {"type": self.type.value, "at": self.at, "runId": self.run_id}
        if self.node_id is not None:
            payload["nodeId"] = self.node_id
        payload.update(self.data)
        return payload


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A handler registered for a set of event types."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events about this node


class EventBus:
    """
    Pub/sub event bus for run events.

    Features:
    - Async handlers run concurrently under a semaphore
    - Type, run and node filters
    - Bounded event history for debugging and replays

    Example:
        bus = EventBus()

        async def on_node_finished(event: FlowEvent):
            print(f"{event.node_id} finished in {event.data['durationMs']}ms")

        bus.subscribe([EventType.NODE_FINISHED], on_node_finished)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Event types to deliver
            handler: Coroutine function called with each matching FlowEvent
            filter_run: Only receive events from this run
            filter_node: Only receive events about this node

        Returns:
            Subscription id for unsubscribe()
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            False if the id was unknown
        """
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [s.handler for s in self._subscriptions.values() if self._matches(s, event)]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    async def emit(
        self,
        event_type: EventType,
        run_id: str,
        node_id: str | None = None,
        **data: Any,
    ) -> FlowEvent:
        """Build and publish an event in one call."""
        event = FlowEvent(type=event_type, run_id=run_id, node_id=node_id, data=data)
        await self.publish(event)
        return event

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(self, event: FlowEvent, handlers: list[EventHandler]) -> None:
        """Run matching handlers concurrently, bounded by the semaphore."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Events kept in history, filtered by type, run and node.

        Returns:
            Matching events, newest first
        """
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]
        return events[:limit]

    def get_stats(self) -> dict:
        """History and subscription counts, for debugging."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    def clear_history(self) -> None:
        self._event_history.clear()

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Block until a matching event is published.

        Returns:
            The first matching event, or None on timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe([event_type], handler, filter_run=run_id, filter_node=node_id)
        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)
