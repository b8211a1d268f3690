"""
History Window — the per-session conversation log fed to generation.

Append-only, role-tagged, and trimmed from the head once it exceeds
max_entries. recent(n) is the bounded slice a generation request sees.
HistoryWindowCache keeps a capped set of windows for sessionless chat.
"""
from __future__ import annotations

import structlog
from collections import OrderedDict, deque
from typing import Iterator

from models.schemas import Speaker, Utterance

logger = structlog.get_logger()


class HistoryWindow:
    """Bounded, ordered record of recent utterances."""

    def __init__(self, max_entries: int = 8):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: deque[Utterance] = deque(maxlen=max_entries)

    def append(self, speaker: Speaker, text: str) -> Utterance:
        utterance = Utterance(speaker=speaker, text=text)
        self._entries.append(utterance)
        return utterance

    def recent(self, n: int) -> list[Utterance]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def to_messages(self, n: int = None) -> list[dict[str, str]]:
        entries = self.recent(n) if n is not None else list(self._entries)
        return [u.to_message() for u in entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Utterance]:
        return iter(list(self._entries))


class HistoryWindowCache:
    """
    Least-recently-used map of key -> HistoryWindow.

    Backs the text chat endpoint, where the key comes from the client, so
    the number of windows is capped at max_windows; the stalest is evicted.
    """

    def __init__(self, max_windows: int = 1000, max_entries: int = 8):
        if max_windows < 1:
            raise ValueError("max_windows must be at least 1")
        self.max_windows = max_windows
        self.max_entries = max_entries
        self._windows: OrderedDict[str, HistoryWindow] = OrderedDict()

    def get(self, key: str) -> HistoryWindow:
        """Window for key, created on first use and marked most recent."""
        window = self._windows.get(key)
        if window is not None:
            self._windows.move_to_end(key)
            return window

        window = HistoryWindow(max_entries=self.max_entries)
        self._windows[key] = window
        while len(self._windows) > self.max_windows:
            evicted, _ = self._windows.popitem(last=False)
            logger.debug("history_window_evicted", key=evicted, size=len(self._windows))
        return window

    def clear(self) -> None:
        self._windows.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._windows

    def __len__(self) -> int:
        return len(self._windows)
