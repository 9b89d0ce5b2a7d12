"""
In-memory record of recent backup runs, served by the status API.
"""

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .backup.executor import DatabaseResult


@dataclass
class RunRecord:
    id: int
    trigger: str
    started_at: datetime
    status: str = 'running'
    completed_at: Optional[datetime] = None
    results: List[DatabaseResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self, include_logs: bool = False) -> dict:
        results = []
        for result in self.results:
            data = result.to_dict()
            if include_logs:
                data['logs'] = list(result.logs)
            results.append(data)

        return {
            'id': self.id,
            'trigger': self.trigger,
            'status': self.status,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error': self.error,
            'databases': results,
        }


class RunHistory:
    """Bounded, thread-safe list of recent runs, newest last."""

    def __init__(self, max_runs: int = 50):
        self._runs = deque(maxlen=max_runs)
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def start(self, trigger: str) -> RunRecord:
        with self._lock:
            record = RunRecord(id=next(self._ids), trigger=trigger, started_at=datetime.now(timezone.utc))
            self._runs.append(record)
            return record

    def finish(self, record: RunRecord, results: List[DatabaseResult], error: Optional[str] = None):
        with self._lock:
            record.results = list(results)
            record.error = error
            record.completed_at = datetime.now(timezone.utc)
            failed = error is not None or any(not r.success for r in results)
            record.status = 'failed' if failed else 'success'

    def recent(self, limit: int = 10) -> List[RunRecord]:
        with self._lock:
            runs = list(self._runs)
        return list(reversed(runs))[:limit]

    def get(self, run_id: int) -> Optional[RunRecord]:
        with self._lock:
            for record in self._runs:
                if record.id == run_id:
                    return record
        return None

    def latest(self) -> Optional[RunRecord]:
        with self._lock:
            return self._runs[-1] if self._runs else None

    def resize(self, max_runs: int):
        """Change how many runs are kept, dropping the oldest if needed."""
        with self._lock:
            self._runs = deque(self._runs, maxlen=max(1, int(max_runs)))

    def clear(self):
        with self._lock:
            self._runs.clear()


run_history = RunHistory()
