"""
Decision trace: append-only JSONL log of access decisions.

Every recorded Decision becomes one line in ``~/.netguard/decisions.jsonl``.
Lines are only ever appended. Each entry carries the deciding policy's id,
version, and content hash, so it stays interpretable after that policy is
edited or deleted.

Recording never raises: a decision has already been made by the time it is
traced, and a full disk or a read-only directory must not turn it into an
error. Reading is equally forgiving: lines that are not JSON objects, or not
valid UTF-8, are skipped with a warning.

Usage::

    trace = DecisionTrace(path)
    trace.record(decision)

    for entry in trace.tail(n=20):
        print(entry["action"], entry["policy_id"])
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from netguard.core.policy.model import Decision

logger = logging.getLogger(__name__)

TraceEntry = dict[str, Any]


class DecisionTrace:
    """
    Append-only JSONL store of decisions.

    Appends from threads in one process are serialised by a lock; separate
    processes writing the same file need their own locking.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, decision: Decision) -> None:
        """Append one decision. Failures are logged at ERROR and swallowed."""
        line = decision.to_json() + "\n"
        with self._lock:
            try:
                self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
            except OSError as exc:
                logger.error("Decision trace: failed to write to %s: %s", self.path, exc)

    def tail(self, n: int = 50) -> list[TraceEntry]:
        """Return the last ``n`` well-formed entries, oldest first."""
        if n <= 0:
            return []
        return list(deque(self, maxlen=n))

    def __iter__(self) -> Iterator[TraceEntry]:
        """Iterate over every well-formed entry, oldest first."""
        try:
            fh = self.path.open("r", encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.error("Decision trace: cannot read %s: %s", self.path, exc)
            return
        with fh:
            yield from self._entries(fh)

    def _entries(self, lines: Iterable[str]) -> Iterator[TraceEntry]:
        for lineno, raw in enumerate(lines, start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Decision trace: skipping corrupt line %d in %s", lineno, self.path)
                continue
            if not isinstance(entry, dict):
                logger.warning(
                    "Decision trace: skipping non-object line %d in %s", lineno, self.path
                )
                continue
            yield entry
