# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Loader events - notifications about unit lifecycle changes.

Handlers receive positional payloads:

    ready()                      first load_files() batch finished
    load(name, unit)             a unit was loaded
    unload(unit)                 a unit was unloaded
    reload(new_unit, old_unit)   a unit was replaced
    load-many(units)             a load_files() batch finished
    error(err)                   a failure that no caller could receive

Example:
    loader.on(LoaderEventType.LOAD, lambda name, unit: print(f"loaded {name}"))

    async def on_reload(new, old):
        await new.warm_up()

    loader.on("reload", on_reload)
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Union
from collections.abc import Callable

from dirloader.errors import ErrorHandler

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]


class LoaderEventType(str, Enum):
    """Types of events emitted by the loader."""

    READY = "ready"
    """The first load_files() batch has completed."""

    LOAD = "load"
    """A unit was loaded (name, unit)."""

    UNLOAD = "unload"
    """A unit was unloaded (unit)."""

    RELOAD = "reload"
    """A unit was replaced by a fresh one (new_unit, old_unit)."""

    LOAD_MANY = "load-many"
    """A load_files() batch has completed (units)."""

    ERROR = "error"
    """A failure surfaced outside of a direct call (err)."""


EventKey = Union[LoaderEventType, str]


def _event_type(event: EventKey) -> LoaderEventType:
    return event if isinstance(event, LoaderEventType) else LoaderEventType(event)


class EventSink:
    """Dispatches loader events to subscribed handlers.

    Handlers may be plain callables or coroutine functions. Handler failures
    are logged and do not interrupt the loader or the remaining handlers.
    """

    def __init__(self, error_handler: Optional[ErrorHandler] = None) -> None:
        self._handlers: dict[LoaderEventType, list[EventHandler]] = {}
        self._error_handler = error_handler or ErrorHandler()
        self._pending: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, event: EventKey, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event type.

        Args:
            event: Event type or its string value
            handler: Called with the event payload

        Returns:
            Function that removes the subscription
        """
        event_type = _event_type(event)
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def once(self, event: EventKey, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler that is removed after its first call."""
        event_type = _event_type(event)

        def wrapper(*args: Any) -> Any:
            self.unsubscribe(event_type, wrapper)
            return handler(*args)

        return self.subscribe(event_type, wrapper)

    def unsubscribe(self, event: EventKey, handler: EventHandler) -> bool:
        handlers = self._handlers.get(_event_type(event), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def has_subscribers(self, event: EventKey) -> bool:
        return bool(self._handlers.get(_event_type(event)))

    def clear(self) -> None:
        self._handlers.clear()

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, event: EventKey, *args: Any) -> None:
        """Dispatch an event, awaiting coroutine handlers in order."""
        event_type = _event_type(event)
        if self._report_unhandled(event_type, args):
            return

        for handler in list(self._handlers.get(event_type, [])):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Handler for '{event_type.value}' event failed: {e}")

    def dispatch_sync(self, event: EventKey, *args: Any) -> None:
        """Dispatch an event from synchronous code.

        Coroutine results are scheduled on the running loop, or run to
        completion when there is none.
        """
        event_type = _event_type(event)
        if self._report_unhandled(event_type, args):
            return

        for handler in list(self._handlers.get(event_type, [])):
            try:
                self.run_handler_result(event_type, handler(*args))
            except Exception as e:
                logger.error(f"Handler for '{event_type.value}' event failed: {e}")

    def run_handler_result(self, event: EventKey, result: Any) -> None:
        """Finish a handler's return value from synchronous code.

        Non-coroutine results are ignored. A coroutine is scheduled on the
        running loop, or run to completion when there is none.
        """
        if not asyncio.iscoroutine(result):
            return
        event_type = _event_type(event)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(result)
            return

        task = loop.create_task(result)
        self._pending.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    f"Handler for '{event_type.value}' event failed: {finished.exception()}"
                )

        task.add_done_callback(done)

    def _report_unhandled(self, event_type: LoaderEventType, args: tuple[Any, ...]) -> bool:
        """Log error events nobody listens to. Returns True if handled here."""
        if event_type is not LoaderEventType.ERROR or self.has_subscribers(event_type):
            return False
        if args and isinstance(args[0], BaseException):
            self._error_handler.handle(args[0], context={"event": event_type.value})
        else:
            logger.error(f"Unhandled loader error event: {args!r}")
        return True


__all__ = ["LoaderEventType", "EventSink", "EventHandler"]
