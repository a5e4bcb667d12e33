"""
Event bus system for async event-driven architecture.

This module provides:
- EventType enum for type-safe event identification
- Event dataclass for structured event data
- EventBus class for async pub/sub event handling

The event bus lets the application report build and broadcast progress to
frontends without depending on them.
"""

import asyncio
import logging
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Awaitable
from datetime import datetime

logger = logging.getLogger('btcsend.events')


class EventType(Enum):
    """
    Enumeration of all event types in the application.

    Using auto() ensures unique values and prevents conflicts.
    """
    # UTXO discovery events
    UTXOS_FETCHED = auto()

    # Transaction building events
    TX_BUILD_STARTED = auto()
    INPUT_SKIPPED = auto()
    TX_BUILD_COMPLETE = auto()
    TX_BUILD_ERROR = auto()

    # Broadcast events
    BROADCAST_COMPLETE = auto()
    BROADCAST_ERROR = auto()


@dataclass
class Event:
    """
    Structured event data.

    Attributes:
        event_type: Type of event (from EventType enum)
        data: Event-specific payload (optional)
        timestamp: When the event was created
        source: Optional identifier for event source (e.g., "builder", "app")
    """
    event_type: EventType
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None

    def __str__(self) -> str:
        """Human-readable string representation."""
        data_preview = ""
        if self.data:
            # Show first 2 keys for brevity
            keys = list(self.data.keys())[:2]
            data_preview = f" ({', '.join(keys)}...)" if keys else ""

        source_info = f" from {self.source}" if self.source else ""
        return f"Event({self.event_type.name}{data_preview}{source_info})"


# Type alias for event handlers (async callbacks)
EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """
    Async event bus for pub/sub event handling.

    Example:
        >>> bus = EventBus()
        >>>
        >>> async def on_skip(event: Event):
        ...     print(f"Skipped: {event.data['txid']}")
        >>>
        >>> bus.on(EventType.INPUT_SKIPPED, on_skip)
        >>> await bus.emit(Event(EventType.INPUT_SKIPPED, {'txid': 'ab...'}))
    """

    def __init__(self):
        """Initialize empty event bus."""
        # Map of event type -> list of handlers
        self._handlers: Dict[EventType, List[EventHandler]] = {}

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Register an event handler for a specific event type.

        Args:
            event_type: Type of event to listen for
            handler: Async callback function to handle the event
        """
        if event_type not in self._handlers:
            self._handlers[event_type] = []

        self._handlers[event_type].append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> bool:
        """
        Unregister an event handler.

        Returns:
            True if handler was found and removed, False otherwise
        """
        if event_type not in self._handlers:
            return False

        try:
            self._handlers[event_type].remove(handler)

            # Clean up empty handler lists
            if not self._handlers[event_type]:
                del self._handlers[event_type]

            return True
        except ValueError:
            return False

    async def emit(self, event: Event) -> None:
        """
        Emit an event to all registered handlers asynchronously.

        All handlers are called concurrently using asyncio.gather().
        If a handler raises an exception, it is caught and logged,
        but other handlers continue to execute.

        Args:
            event: Event to emit
        """
        handlers = self._handlers.get(event.event_type, []).copy()

        if handlers:
            tasks = [self._safe_call_handler(handler, event) for handler in handlers]
            await asyncio.gather(*tasks)

    async def _safe_call_handler(self, handler: EventHandler, event: Event) -> None:
        """Call a handler, logging instead of propagating its exceptions."""
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Error in event handler for {event.event_type.name}: {e}")

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        """
        Get the number of registered handlers.

        Args:
            event_type: Event type to count handlers for (None = count all)
        """
        if event_type is None:
            return sum(len(handlers) for handlers in self._handlers.values())

        return len(self._handlers.get(event_type, []))
