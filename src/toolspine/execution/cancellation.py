"""Cancellation token — the single shared signal of a batch.

WHY
───
Throwing across coroutine boundaries to abort work is brittle: the
thrower cannot know what the operation was in the middle of.  Instead
one ``CancellationToken`` is created per batch and handed by reference
to every operation.  Operations poll it between items and race their
blocking steps against ``wait()``; the scheduler checks it before
starting anything new.

ARCHITECTURE
────────────
::

    CancellationToken
      ├── .cancel(reason)        ─ set once; later calls are no-ops
      ├── .cancelled / .reason   ─ read-only view for operations
      ├── .wait()                ─ awaitable, resolves on cancel
      ├── .raise_if_cancelled()  ─ OperationCancelled checkpoint
      └── .child()               ─ linked token (parent → child only)

    Timeouts are not a primitive here: a timer that calls ``cancel()``
    is layered on top (see timeout.py).

Example::

    token = CancellationToken()
    loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    result = await policy.execute(batch, token)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from toolspine.core.errors import OperationCancelled
from toolspine.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REASON = "cancelled"


class CancellationToken:
    """Cooperative, one-shot cancellation signal.

    The token is only ever mutated by whoever owns it (the caller, a
    timer, or a parent token); operations treat it as read-only.
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[CancellationToken], None]] = []
        self._parent = parent
        self._unlink: Callable[[], None] | None = None
        if parent is not None:
            self._unlink = parent.add_callback(self._cancel_from_parent)

    def __repr__(self) -> str:
        state = f"cancelled={self._reason!r}" if self.cancelled else "active"
        return f"CancellationToken({state})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled, ``None`` while still active."""
        return self._reason

    def cancel(self, reason: str = DEFAULT_REASON) -> bool:
        """Fire the signal.

        Returns:
            ``True`` if this call cancelled the token, ``False`` if it was
            already cancelled (the first reason wins).
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("cancellation.callback_failed", reason=reason)
        return True

    def add_callback(self, callback: Callable[[CancellationToken], None]) -> Callable[[], None]:
        """Run ``callback(token)`` on cancellation.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that unregisters the callback.
        """
        if self._event.is_set():
            callback(self)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> str:
        """Suspend until the token is cancelled; returns the reason."""
        await self._event.wait()
        return self._reason or DEFAULT_REASON

    def raise_if_cancelled(self) -> None:
        """Checkpoint for operations: raise ``OperationCancelled`` if fired."""
        if self._event.is_set():
            raise OperationCancelled(self._reason or DEFAULT_REASON)

    def child(self) -> CancellationToken:
        """Create a token that is cancelled whenever this one is.

        Cancelling the child leaves the parent untouched.  Call
        :meth:`detach` on the child once it is no longer needed.
        """
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None

    def _cancel_from_parent(self, parent: CancellationToken) -> None:
        self.cancel(parent.reason or DEFAULT_REASON)


__all__ = ["CancellationToken", "DEFAULT_REASON"]
