"""
In-memory cache of tender numbers already present in the relational store.

The cache lives for the lifetime of the Lambda execution environment, so it is
populated once on the first invocation and reused by every batch (and every
warm invocation) after that. It is cleared when the environment is recycled.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, FrozenSet, List, Optional, Protocol

from aws_lambda_powertools import Logger

from .exceptions import CacheNotInitializedError, CachePopulationError


class TenderNumberSource(Protocol):
    """The subset of TenderRepository the cache depends on."""

    def known_sources(self) -> List[str]: ...

    def list_known_tender_numbers(self, source: str) -> List[str]: ...


def _normalise(value: str) -> str:
    return value.strip().casefold()


class TenderDedupCache:
    """
    Maps each source to the set of tender numbers known for it.

    Lookups are case-insensitive on both source and tender number. A source's
    set is written once and never mutated afterwards.

    Population uses double-checked locking: once loaded, `ensure_loaded` returns
    after a single attribute read. The first caller to take the population lock
    runs one query per source on a thread pool. Results are staged privately
    (guarded by a separate insert lock) and only published when every source has
    loaded, so readers never see a half-populated cache.
    """

    def __init__(self, repository: TenderNumberSource, logger: Logger):
        self._repository = repository
        self._logger = logger
        self._cache: Optional[Dict[str, FrozenSet[str]]] = None
        self._population_lock = threading.Lock()
        self._insert_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._cache is not None

    def ensure_loaded(self) -> None:
        """
        Populates the cache from the repository if it has not been populated yet.

        Safe to call repeatedly and from several threads; only one population
        pass ever runs successfully per process.

        Raises:
            CachePopulationError: If any per-source query fails. The cache stays
                unpopulated so the next call retries from scratch.
        """
        if self._cache is not None:
            return

        with self._population_lock:
            if self._cache is not None:
                return
            self._logger.info("In-memory tender cache is not initialized. Populating from database...")
            staged = self._populate()
            self._cache = staged

        self._logger.info(
            "Tender cache populated successfully.",
            extra={"sources": len(staged), "tender_numbers": sum(len(s) for s in staged.values())},
        )

    def _populate(self) -> Dict[str, FrozenSet[str]]:
        sources = self._repository.known_sources()
        staged: Dict[str, FrozenSet[str]] = {}
        if not sources:
            self._logger.warning("Tender repository reported no known sources; cache will be empty.")
            return staged

        def _load(source: str) -> None:
            numbers = self._repository.list_known_tender_numbers(source)
            number_set = frozenset(_normalise(n) for n in numbers if n and n.strip())
            with self._insert_lock:
                staged[_normalise(source)] = number_set
            self._logger.info(
                f"Loaded {len(number_set)} tender numbers for source: {source}",
                extra={"source": source, "count": len(number_set)},
            )

        with ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="cache-load") as executor:
            futures = {executor.submit(_load, source): source for source in sources}

        # Leaving the executor block joins every query; now collect failures.
        failed = [source for future, source in futures.items() if future.exception() is not None]
        if failed:
            first_error = next(f.exception() for f in futures if f.exception() is not None)
            self._logger.error(
                "Failed to populate tender cache from the database. Resetting cache.",
                extra={"failed_sources": failed},
                exc_info=first_error,
            )
            raise CachePopulationError(failed, first_error) from first_error
        return staged

    def is_duplicate(self, source: Optional[str], tender_number: Optional[str]) -> bool:
        """
        Returns True if (source, tender_number) is already in the store.

        Blank inputs and unknown sources are never duplicates.

        Raises:
            CacheNotInitializedError: If called before `ensure_loaded` completed.
        """
        cache = self._cache
        if cache is None:
            raise CacheNotInitializedError("Tender cache has not been initialized.")

        if not source or not source.strip() or not tender_number or not tender_number.strip():
            return False

        numbers = cache.get(_normalise(source))
        return numbers is not None and _normalise(tender_number) in numbers
