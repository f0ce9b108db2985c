"""Fingerprint service: calibration storage and cache generation publishing.

A FingerprintService owns one calibration set (one classifier). It appends raw
captures to a FingerprintStore and rebuilds the cache generation from the full
raw set on demand. Published generations are never modified: a rebuild
constructs a new generation and swaps the reference, so readers see either the
old or the new generation, never a partial one.

At most one rebuild runs at a time. Callers that request a rebuild while one
is in flight wait for it and receive the same generation, unless they inserted
data the running rebuild cannot have seen; those callers share one follow-up
rebuild. Update listeners are called once per published generation, and a
failing listener is logged without affecting the others.

Author: Navigation Engineer
Date: 2026
"""

import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, List, Optional

from .aggregation import rebuild_cache
from .config import FingerprintingOptions
from .interpolation import interpolate_generation
from .store import FingerprintStore
from .types import CacheGeneration, Fingerprint, Measurement, is_usable_value

logger = logging.getLogger(__name__)

UpdateListener = Callable[[CacheGeneration], None]
ValueFilter = Callable[[str, float], bool]


def fingerprint_from_measurement(
    measurement: Measurement,
    classifier: str = "",
    value_filter: Optional[ValueFilter] = None,
    timestamp: Optional[float] = None,
) -> Optional[Fingerprint]:
    """
    Create a raw fingerprint from a positioned measurement.

    Unusable readings (None, NaN, non-numeric) and readings rejected by
    `value_filter(key, value)` are left out.

    Returns:
        The fingerprint, or None when the measurement has no position or no
        reading survives the filters.
    """
    if measurement.position is None:
        return None

    fingerprint = Fingerprint(
        position=measurement.position.copy(),
        classifier=classifier,
        source_uid=measurement.uid,
    )
    if timestamp is not None:
        fingerprint.created_timestamp = timestamp

    for key, value in measurement.readings.items():
        if not is_usable_value(value):
            continue
        if value_filter is not None and not value_filter(key, value):
            continue
        fingerprint.add_feature(key, value)

    if not fingerprint.features:
        return None
    return fingerprint


class FingerprintService:
    """
    Storage and cache management for one calibration set.

    Args:
        store: Raw-fingerprint store.
        options: Service options (FingerprintingOptions() by default).

    Examples:
        >>> service = FingerprintService(MemoryFingerprintStore(),
        ...                              FingerprintingOptions(classifier="wlan"))
        >>> _ = service.record(Measurement({"AP1": -50.0}, position=Position([0.0, 0.0])))
        >>> service.update().n_fingerprints
        1
    """

    def __init__(self, store: FingerprintStore, options: Optional[FingerprintingOptions] = None):
        self.store = store
        self.options = options if options is not None else FingerprintingOptions()
        self._lock = threading.Lock()
        self._pending: Optional[Future] = None
        self._queued: Optional[Future] = None
        # Count of inserts, and the count the running rebuild started from
        self._revision = 0
        self._pending_revision = 0
        self._listeners: List[UpdateListener] = []
        self._generation = CacheGeneration(classifier=self.options.classifier)

    @property
    def classifier(self) -> str:
        return self.options.classifier

    @property
    def generation(self) -> CacheGeneration:
        """Currently published cache generation."""
        return self._generation

    @property
    def cache(self):
        """Processed fingerprints of the published generation."""
        return self._generation.fingerprints

    @property
    def cached_references(self):
        """Known feature keys of the published generation."""
        return self._generation.cached_references

    def add_update_listener(self, listener: UpdateListener) -> None:
        """Register `listener(generation)`, called once per completed rebuild."""
        with self._lock:
            self._listeners.append(listener)

    def remove_update_listener(self, listener: UpdateListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    def insert(self, fingerprint: Fingerprint) -> Fingerprint:
        """
        Store one raw fingerprint under this service's classifier.

        With `auto_update` enabled, the cache is rebuilt afterwards.
        """
        fingerprint.classifier = self.classifier
        stored = self.store.insert(fingerprint)
        with self._lock:
            self._revision += 1
        if self.options.auto_update:
            self.update()
        return stored

    def record(
        self, measurement: Measurement, value_filter: Optional[ValueFilter] = None
    ) -> Optional[Fingerprint]:
        """
        Record a positioned measurement as a calibration capture.

        Returns:
            The stored fingerprint, or None when nothing was stored.
        """
        fingerprint = fingerprint_from_measurement(
            measurement, self.classifier, value_filter, timestamp=time.time()
        )
        if fingerprint is None:
            return None
        return self.insert(fingerprint)

    def update(self) -> CacheGeneration:
        """
        Rebuild the cache generation from all raw fingerprints.

        A request made while a rebuild is in flight joins it when that rebuild
        already covers every insert the caller has seen. Otherwise the caller
        waits for one follow-up rebuild, shared by all such late requests.

        Returns:
            The newly published generation.
        """
        with self._lock:
            revision = self._revision
            if self._pending is None:
                future = self._pending = Future()
                self._pending_revision = revision
                owner = True
            elif self._pending_revision >= revision:
                future, owner = self._pending, False
            else:
                # Raw data changed after the running rebuild read the store
                if self._queued is None:
                    self._queued = Future()
                future, owner = self._queued, False

        if not owner:
            logger.debug("Rebuild already in progress for %r, waiting", self.classifier)
            return future.result()

        while True:
            try:
                generation = self._rebuild()
            except BaseException as exc:
                with self._lock:
                    queued, self._queued = self._queued, None
                    self._pending = None
                future.set_exception(exc)
                if queued is not None:
                    queued.set_exception(exc)
                raise

            self._generation = generation
            self._notify(generation)
            future.set_result(generation)
            logger.info(
                "Published cache generation %d for %r: %d fingerprints, %d references",
                generation.generation, self.classifier,
                generation.n_fingerprints, generation.dim,
            )

            with self._lock:
                future, self._queued = self._queued, None
                self._pending = future
                if future is None:
                    return generation
                self._pending_revision = self._revision

    def _notify(self, generation: CacheGeneration) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(generation)
            except Exception:
                logger.exception(
                    "Update listener %r failed for generation %d",
                    listener, generation.generation,
                )

    def _rebuild(self) -> CacheGeneration:
        raw = self.store.find_all(self.classifier)
        generation = rebuild_cache(
            raw,
            group_by=self.options.group_by,
            agg_fn=self.options.agg_fn,
            default_value=self.options.default_value,
            classifier=self.classifier,
            generation=self._generation.generation + 1,
        )
        if self.options.interpolate and not generation.is_empty:
            generation = interpolate_generation(
                generation,
                step=self.options.interpolation_step,
                method=self.options.interpolation_method,
                group_by=self.options.group_by,
            )
        return generation
