"""Toast and confirmation service shared by client components.

A single ``Notifier`` is created at startup and handed to every component
that needs to tell the user something or ask them a question. The UI layer
(CLI prompt, web frontend bridge, test harness) subscribes to it:

- toasts are pushed to subscribers and expire after their duration
- confirmations are published as ``ConfirmRequest`` objects; the caller is
  suspended until the UI calls ``respond()`` with the user's decision
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum as PyEnum

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)


class ToastType(str, PyEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Toast:
    id: int
    message: str
    type: ToastType
    duration_ms: int


@dataclass(frozen=True)
class ConfirmOption:
    key: str
    label: str


@dataclass
class ConfirmRequest:
    """A pending question for the user.

    ``options`` holds the choices in display order; a plain confirm has two
    (``confirm`` and ``cancel``).
    """

    id: int
    title: str
    message: str
    options: list[ConfirmOption]
    type: str = "warning"
    future: asyncio.Future | None = field(default=None, repr=False)


ToastListener = Callable[[Toast], None]
ConfirmListener = Callable[[ConfirmRequest], None]


class Notifier:
    """Toasts plus awaitable confirmations, without ambient global state."""

    def __init__(self, *, default_duration_ms: int | None = None) -> None:
        if default_duration_ms is None:
            default_duration_ms = get_settings().toast_duration_ms
        self.default_duration_ms = default_duration_ms
        self.toasts: list[Toast] = []
        self.pending: dict[int, ConfirmRequest] = {}
        self._ids = itertools.count(1)
        self._expiry_handles: dict[int, asyncio.TimerHandle] = {}
        self._toast_listeners: list[ToastListener] = []
        self._confirm_listeners: list[ConfirmListener] = []

    def on_toast(self, listener: ToastListener) -> None:
        self._toast_listeners.append(listener)

    def on_confirm(self, listener: ConfirmListener) -> None:
        self._confirm_listeners.append(listener)

    # Toasts

    def notify(
        self,
        message: str,
        type: ToastType = ToastType.INFO,
        duration_ms: int | None = None,
    ) -> int:
        """Show a toast and return its id. ``duration_ms=0`` keeps it until dismissed."""
        if duration_ms is None:
            duration_ms = self.default_duration_ms

        toast = Toast(
            id=next(self._ids), message=message, type=type, duration_ms=duration_ms
        )
        self.toasts.append(toast)
        logger.debug("toast.shown", toast_id=toast.id, type=type.value)

        if duration_ms > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._expiry_handles[toast.id] = loop.call_later(
                    duration_ms / 1000, self.dismiss, toast.id
                )

        for listener in list(self._toast_listeners):
            listener(toast)
        return toast.id

    def success(self, message: str, duration_ms: int | None = None) -> int:
        return self.notify(message, ToastType.SUCCESS, duration_ms)

    def error(self, message: str, duration_ms: int | None = None) -> int:
        return self.notify(message, ToastType.ERROR, duration_ms)

    def warning(self, message: str, duration_ms: int | None = None) -> int:
        return self.notify(message, ToastType.WARNING, duration_ms)

    def info(self, message: str, duration_ms: int | None = None) -> int:
        return self.notify(message, ToastType.INFO, duration_ms)

    def dismiss(self, toast_id: int) -> None:
        handle = self._expiry_handles.pop(toast_id, None)
        if handle is not None:
            handle.cancel()
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    def clear(self) -> None:
        for handle in self._expiry_handles.values():
            handle.cancel()
        self._expiry_handles.clear()
        self.toasts = []

    # Confirmations

    def ask(
        self,
        message: str,
        options: list[ConfirmOption],
        *,
        title: str = "Confirm Action",
        type: str = "warning",
    ) -> ConfirmRequest:
        """Publish a question without waiting for it; pair with ``wait()``.

        Callers that may need to withdraw the question keep the returned
        request's id for ``cancel()``.
        """
        loop = asyncio.get_running_loop()
        request = ConfirmRequest(
            id=next(self._ids),
            title=title,
            message=message,
            options=options,
            type=type,
            future=loop.create_future(),
        )
        self.pending[request.id] = request

        for listener in list(self._confirm_listeners):
            listener(request)
        return request

    async def wait(self, request: ConfirmRequest) -> str | None:
        try:
            return await request.future
        finally:
            self.pending.pop(request.id, None)

    async def choose(
        self,
        message: str,
        options: list[ConfirmOption],
        *,
        title: str = "Confirm Action",
        type: str = "warning",
    ) -> str | None:
        """Ask the user to pick one option; returns its key, or None if dismissed."""
        return await self.wait(self.ask(message, options, title=title, type=type))

    async def confirm(
        self,
        message: str,
        title: str | None = None,
        *,
        confirm_text: str = "Confirm",
        cancel_text: str = "Cancel",
        type: str = "warning",
    ) -> bool:
        """Suspend until the user confirms (True) or cancels (False)."""
        choice = await self.choose(
            message or "Are you sure?",
            [ConfirmOption("confirm", confirm_text), ConfirmOption("cancel", cancel_text)],
            title=title or "Confirm Action",
            type=type,
        )
        return choice == "confirm"

    def respond(self, request_id: int, choice: str | bool | None) -> None:
        """Deliver the user's answer. Later answers for the same request are ignored."""
        request = self.pending.get(request_id)
        if request is None or request.future.done():
            return

        if choice is True:
            choice = "confirm"
        elif choice is False:
            choice = "cancel"
        request.future.set_result(choice)

    def cancel(self, request_id: int) -> None:
        """Withdraw an unanswered question; its waiter receives None.

        The UI closes the modal once ``request.future`` is done.
        """
        if request_id in self.pending:
            logger.debug("confirm.cancelled", request_id=request_id)
        self.respond(request_id, None)
