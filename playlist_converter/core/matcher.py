"""
Catalog matching

CatalogMatcher looks up one source track in the destination catalog.
MatchCoordinator runs it over a whole playlist on a thread pool.

Per-track failures (nothing found, a flaky request) become misses and the
batch carries on. An expired session or exhausted quota stops the batch: the
shared cancel token is set, queued lookups are dropped, lookups already in
flight are allowed to finish, and everything gathered so far is discarded.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from core.cache import SearchCache
from core.cancel import CancelToken
from core.errors import (FATAL_ERRORS, NotFoundError, SearchAbortError,
                         ServiceError)
from core.models import (DestinationCatalog, FailureKind, Hit, MatchResult,
                         Miss, SearchQuery, SearchResult, TrackDescriptor)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class CatalogMatcher:
    """Finds the best destination item for one track."""

    def __init__(self, catalog: DestinationCatalog, cache: SearchCache | None = None):
        self._catalog = catalog
        self._cache = cache

    @property
    def catalog(self) -> DestinationCatalog:
        return self._catalog

    @staticmethod
    def build_query(descriptor: TrackDescriptor) -> SearchQuery:
        return SearchQuery(title=descriptor.title.strip(), artist=descriptor.artist.strip())

    def match(self, descriptor: TrackDescriptor) -> MatchResult:
        """Return a Hit or Miss. Unauthorized and quota errors propagate."""
        query = self.build_query(descriptor)
        service = self._catalog.service

        if self._cache is not None:
            cached = self._cache.get(service, query)
            if cached:
                logger.debug(f"Cache hit: {descriptor.label()}")
                return Hit(descriptor, cached)

        try:
            item = self._catalog.search(query)
        except FATAL_ERRORS:
            raise
        except NotFoundError:
            logger.info(f"No match: {descriptor.label()}")
            return Miss(descriptor, FailureKind.NOT_FOUND)
        except ServiceError as e:
            logger.warning(f"Search failed for '{descriptor.label()}': {e}")
            return Miss(descriptor, FailureKind.TRANSIENT)
        except Exception as e:
            logger.warning(f"Search error for '{descriptor.label()}': {type(e).__name__}: {e}")
            return Miss(descriptor, FailureKind.TRANSIENT)

        if self._cache is not None:
            self._cache.set(service, query, item)
        return Hit(descriptor, item)


class MatchCoordinator:
    """Runs CatalogMatcher concurrently over a list of tracks."""

    def __init__(self, matcher: CatalogMatcher, max_workers: int = DEFAULT_MAX_WORKERS):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._matcher = matcher
        self._max_workers = max_workers

    def _match_one(self, descriptor: TrackDescriptor, token: CancelToken) -> MatchResult | None:
        if token.is_cancelled():
            return None
        try:
            return self._matcher.match(descriptor)
        except FATAL_ERRORS:
            # Stop siblings before the main thread even sees the error
            token.cancel()
            raise

    def search_all(self, descriptors: list[TrackDescriptor]) -> SearchResult:
        """Match every descriptor. Raises SearchAbortError on a fatal error."""
        result = SearchResult()
        if not descriptors:
            return result

        service = self._matcher.catalog.service
        logger.info(f"Searching {service.display_name} for {len(descriptors)} tracks "
                    f"({min(self._max_workers, len(descriptors))} workers)")

        token = CancelToken()
        executor = ThreadPoolExecutor(max_workers=self._max_workers,
                                      thread_name_prefix="catalog_search")
        try:
            futures = [executor.submit(self._match_one, d, token) for d in descriptors]
            for future in as_completed(futures):
                match = future.result()
                if isinstance(match, Hit):
                    result.hits.append(match)
                elif isinstance(match, Miss):
                    result.misses.append(match)
        except FATAL_ERRORS as e:
            token.cancel()
            logger.error(f"Search aborted: {e}")
            raise SearchAbortError(e) from e
        finally:
            token.cancel()
            executor.shutdown(wait=True, cancel_futures=True)

        logger.info(f"Search complete: {len(result.hits)} found, {len(result.misses)} missing")
        return result
