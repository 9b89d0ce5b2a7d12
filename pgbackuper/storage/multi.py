"""
Fan a single storage operation out to several backends at once.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from .base import Backend, OperationResult


logger = logging.getLogger(__name__)


class MultiUploader:
    """
    Runs writes and deletes against every backend concurrently.

    One worker thread is started per backend and each stores its outcome in
    its own result slot. Results are returned only after every worker has
    finished, in the same order as the backends were given. A failing or
    slow backend never cancels the others.
    """

    def __init__(self, backends: Sequence[Backend]):
        self.backends = list(backends)

    def upload(self, source_path: str, dest_path: str,
               cancel_event: Optional[threading.Event] = None) -> List[OperationResult]:
        """
        Write one local file to every backend.

        Args:
            source_path: Local file to upload
            dest_path: Destination path relative to each backend's root
            cancel_event: Passed to each backend's retry wait

        Returns:
            One OperationResult per backend
        """
        return self._fan_out('upload', lambda backend: backend.write(source_path, dest_path, cancel_event))

    def delete(self, path: str) -> List[OperationResult]:
        """Delete one path from every backend."""
        return self._fan_out('delete', lambda backend: backend.delete(path))

    def _fan_out(self, operation: str, action: Callable[[Backend], None]) -> List[OperationResult]:
        if not self.backends:
            return []

        results: List[Optional[OperationResult]] = [None] * len(self.backends)

        def run(index: int, backend: Backend):
            started = time.monotonic()
            error = None
            try:
                action(backend)
            except Exception as e:
                error = e
                logger.error(f"{operation} to {backend.name} ({backend.type}) failed: {e}")
            results[index] = OperationResult(
                backend_name=backend.name,
                backend_type=backend.type,
                success=error is None,
                error=error,
                duration=time.monotonic() - started,
            )

        with ThreadPoolExecutor(max_workers=len(self.backends), thread_name_prefix=f"multi-{operation}") as pool:
            for index, backend in enumerate(self.backends):
                pool.submit(run, index, backend)

        return list(results)


def successful(results: Sequence[OperationResult]) -> List[OperationResult]:
    return [result for result in results if result.success]


def failed(results: Sequence[OperationResult]) -> List[OperationResult]:
    return [result for result in results if not result.success]
