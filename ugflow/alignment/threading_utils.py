from __future__ import annotations

import threading
from collections.abc import Callable

from ugflow.alignment.flow_based_aligner import FlowBasedAligner


class AlignerPool:
    """Keeps a separate aligner for every thread that asks for one

    Aligners are created lazily by `factory` and are never shared between threads

    Parameters
    ----------
    factory: Callable[[], FlowBasedAligner]
        Creates a new aligner
    """

    def __init__(self, factory: Callable[[], FlowBasedAligner]):
        self._factory = factory
        self._aligners = {}
        self._lock = threading.Lock()

    def get(self) -> FlowBasedAligner:
        """Aligner of the calling thread"""
        thread_id = threading.get_ident()
        with self._lock:
            aligner = self._aligners.get(thread_id)
            if aligner is None:
                aligner = self._factory()
                self._aligners[thread_id] = aligner
            return aligner

    def __len__(self) -> int:
        with self._lock:
            return len(self._aligners)
