# concurrency.py
# At most one run per branch: a newer run on the same branch cancels the
# one still in flight.
from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple


class RunCoordinator:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Dict[str, Tuple[str, threading.Event]] = {}

    def begin(self, branch: str, run_id: str, cancel: Optional[threading.Event] = None) -> threading.Event:
        """Register `run_id` as the live run of `branch`; cancels the previous one."""
        event = cancel or threading.Event()
        with self._lock:
            previous = self._active.get(branch)
            self._active[branch] = (run_id, event)
        if previous is not None and previous[0] != run_id:
            previous[1].set()
        return event

    def finish(self, branch: str, run_id: str) -> None:
        with self._lock:
            current = self._active.get(branch)
            if current is not None and current[0] == run_id:
                del self._active[branch]

    def active_run(self, branch: str) -> Optional[str]:
        with self._lock:
            current = self._active.get(branch)
            return current[0] if current else None
