"""Raw-fingerprint stores.

The cache builder only needs two things from storage: fetch every raw
fingerprint of a classifier, and append one raw fingerprint. Durable storage
drivers implement FingerprintStore; MemoryFingerprintStore keeps everything
in process memory.
"""

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .types import Fingerprint


class FingerprintStore(ABC):
    """Abstract base class for raw-fingerprint storage."""

    @abstractmethod
    def find_all(self, classifier: Optional[str] = None) -> List[Fingerprint]:
        """
        Fetch raw fingerprints.

        Args:
            classifier: Only return fingerprints with this classifier.
                        None returns every fingerprint.

        Returns:
            List of fingerprints in insertion order.
        """
        pass

    @abstractmethod
    def insert(self, fingerprint: Fingerprint) -> Fingerprint:
        """
        Append one raw fingerprint.

        Returns:
            The stored fingerprint.
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored fingerprint."""
        pass

    def insert_many(self, fingerprints: Iterable[Fingerprint]) -> List[Fingerprint]:
        return [self.insert(fingerprint) for fingerprint in fingerprints]

    def count(self, classifier: Optional[str] = None) -> int:
        return len(self.find_all(classifier))


class MemoryFingerprintStore(FingerprintStore):
    """In-memory, thread-safe fingerprint store."""

    def __init__(self, fingerprints: Optional[Iterable[Fingerprint]] = None):
        self._lock = threading.Lock()
        self._fingerprints: List[Fingerprint] = []
        if fingerprints is not None:
            self.insert_many(fingerprints)

    def find_all(self, classifier: Optional[str] = None) -> List[Fingerprint]:
        with self._lock:
            if classifier is None:
                return list(self._fingerprints)
            return [fp for fp in self._fingerprints if fp.classifier == classifier]

    def insert(self, fingerprint: Fingerprint) -> Fingerprint:
        if not isinstance(fingerprint, Fingerprint):
            raise TypeError(f"Expected a Fingerprint, got {type(fingerprint)}")
        with self._lock:
            self._fingerprints.append(fingerprint)
        return fingerprint

    def clear(self) -> None:
        with self._lock:
            self._fingerprints.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._fingerprints)
