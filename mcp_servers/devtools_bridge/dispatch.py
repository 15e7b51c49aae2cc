"""
Single-slot FIFO admission for everything that touches the shared connection.

CDP over one browser websocket is not safe under interleaved command
sequences, so exactly one operation runs at a time. Waiters are admitted in
ticket order; the guard is released on every exit path.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, TypeVar

from .errors import ExclusivityViolation

T = TypeVar("T")


class DispatchSerializer:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._abandoned: set[int] = set()
        self._owner: int | None = None

    @property
    def in_flight(self) -> bool:
        with self._cond:
            return self._owner is not None

    @property
    def queued(self) -> int:
        with self._cond:
            waiting = self._next_ticket - self._serving - len(self._abandoned)
            return max(0, waiting - (1 if self._owner is not None else 0))

    def _advance(self) -> None:
        # Caller holds self._cond.
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Generator[None, None, None]:
        me = threading.get_ident()
        with self._cond:
            if self._owner == me:
                raise ExclusivityViolation("Nested admission from the thread already holding the dispatch guard")
            ticket = self._next_ticket
            self._next_ticket += 1
            try:
                while ticket != self._serving:
                    self._cond.wait()
            except BaseException:
                # Interrupted before admission: give the slot up without blocking later tickets.
                if ticket == self._serving:
                    self._advance()
                else:
                    self._abandoned.add(ticket)
                raise
            self._owner = me
        try:
            yield
        finally:
            with self._cond:
                self._owner = None
                self._advance()

    def with_exclusive_access(self, op: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self.exclusive():
            return op(*args, **kwargs)


__all__ = ["DispatchSerializer"]
