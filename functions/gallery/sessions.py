"""
Per-session ownership of navigators.

The registry is created by the application factory and kept on
``app.state``; route handlers reach it through a dependency.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Iterator, Optional

from gallery.navigator import ModalNavigator

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 10_000


class NavigatorRegistry:
    """
    In-memory map of session id to navigator. Nothing is persisted.

    At most ``max_sessions`` navigators are kept; creating one more evicts the
    session that was used least recently.
    """

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._entries: OrderedDict[str, tuple[ModalNavigator, threading.Lock]] = (
            OrderedDict()
        )
        self._guard = threading.Lock()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(
        self, session_id: str, create: bool
    ) -> Optional[tuple[ModalNavigator, threading.Lock]]:
        with self._guard:
            entry = self._entries.get(session_id)
            if entry is not None:
                self._entries.move_to_end(session_id)
                return entry
            if not create:
                return None
            entry = (ModalNavigator(), threading.Lock())
            self._entries[session_id] = entry
            logger.debug("Created navigator for session %s", session_id)
            while len(self._entries) > self.max_sessions:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("Evicted idle navigator for session %s", evicted)
            return entry

    @contextmanager
    def session(
        self, session_id: str, create: bool = True
    ) -> Iterator[Optional[ModalNavigator]]:
        """
        Yield the navigator for ``session_id``, creating it closed on first use.

        With ``create=False`` an unknown session yields None and nothing is
        registered. Calls for the same session are applied one at a time.
        """
        entry = self._lookup(session_id, create)
        if entry is None:
            yield None
            return
        navigator, lock = entry
        with lock:
            yield navigator

    def discard(self, session_id: str) -> bool:
        with self._guard:
            return self._entries.pop(session_id, None) is not None
