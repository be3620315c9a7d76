"""
Conversion Orchestrator

Drives one conversion job through:

    Idle -> Searching -> Aborted | SearchFailed | Matched
    Matched -> Creating -> CreateFailed | Created
    Created -> Inserting -> Success | InsertFailedRolledBack

Every terminal state produces a ConversionOutcome. Nothing is retried: a new
attempt is a new job with fresh search results. Success hooks fire once,
only from Success.
"""

import logging
import time
from enum import Enum
from typing import Callable

from core.errors import PlaylistWriteError, SearchAbortError
from core.matcher import MatchCoordinator
from core.models import (Aborted, AuthProvider, ConversionJob,
                         ConversionOutcome, Failed, Failure, FailureKind,
                         RolledBack, Stage, Success, TrackDescriptor)
from core.writer import PlaylistWriter

logger = logging.getLogger(__name__)

SuccessHook = Callable[[ConversionJob, Success], None]


class ConversionState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    ABORTED = "aborted"
    SEARCH_FAILED = "search_failed"
    MATCHED = "matched"
    CREATING = "creating"
    CREATE_FAILED = "create_failed"
    CREATED = "created"
    INSERTING = "inserting"
    SUCCESS = "success"
    INSERT_FAILED_ROLLED_BACK = "insert_failed_rolled_back"


TERMINAL_STATES = frozenset({
    ConversionState.ABORTED,
    ConversionState.SEARCH_FAILED,
    ConversionState.CREATE_FAILED,
    ConversionState.SUCCESS,
    ConversionState.INSERT_FAILED_ROLLED_BACK,
})


class ConversionInProgressError(Exception):
    """Raised when run() is re-entered while a job is running."""


class ConversionOrchestrator:
    """Runs conversion jobs against one destination catalog.

    Not thread-safe: drive an orchestrator from a single thread. The
    in-progress guard is a plain attribute check, not a lock, so concurrent
    jobs need one orchestrator each.
    """

    def __init__(self, coordinator: MatchCoordinator, writer: PlaylistWriter,
                 auth: AuthProvider):
        self._coordinator = coordinator
        self._writer = writer
        self._auth = auth
        self._hooks: list[SuccessHook] = []
        self._job: ConversionJob | None = None
        self.state = ConversionState.IDLE
        self.history: list[ConversionState] = []

    def add_success_hook(self, hook: SuccessHook) -> None:
        self._hooks.append(hook)

    def _transition(self, state: ConversionState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self, job: ConversionJob, tracks: list[TrackDescriptor]) -> ConversionOutcome:
        """Convert ``tracks`` into a new playlist. Always returns an outcome."""
        if self._job is not None:
            raise ConversionInProgressError(f"Job for '{self._job.playlist_title}' still running")

        start = time.time()
        self._job = job
        self.history = []
        self.state = ConversionState.IDLE

        logger.info("=" * 50)
        logger.info(f"Converting '{job.playlist_title}': {job.source.display_name} -> "
                    f"{job.destination.display_name} ({len(tracks)} tracks)")
        try:
            outcome = self._run(job, tracks)
        finally:
            self._job = None

        logger.info(f"Finished in {time.time() - start:.1f}s: {outcome.message}")
        logger.info("=" * 50)

        if isinstance(outcome, Success):
            self._notify(job, outcome)
        self.state = ConversionState.IDLE
        return outcome

    def _run(self, job: ConversionJob, tracks: list[TrackDescriptor]) -> ConversionOutcome:
        if not self._auth.is_authorized(job.user_id, job.destination):
            logger.warning(f"{job.destination.display_name} is not authorized for {job.user_id}")
            self._transition(ConversionState.ABORTED)
            return Aborted(Failure(FailureKind.UNAUTHORIZED, job.destination, "authorization check",
                                   "not connected"))

        self._transition(ConversionState.SEARCHING)
        try:
            result = self._coordinator.search_all(tracks)
        except SearchAbortError as e:
            self._transition(ConversionState.ABORTED)
            return Aborted(e.failure)

        if not result.hits:
            self._transition(ConversionState.SEARCH_FAILED)
            return Failed(Stage.SEARCH, Failure(FailureKind.NOT_FOUND, job.destination, "search",
                                                f"none of {len(tracks)} tracks matched"))
        self._transition(ConversionState.MATCHED)

        self._transition(ConversionState.CREATING)
        try:
            playlist_id = self._writer.create(job)
        except PlaylistWriteError as e:
            self._transition(ConversionState.CREATE_FAILED)
            return Failed(Stage.CREATE, e.failure)
        self._transition(ConversionState.CREATED)

        self._transition(ConversionState.INSERTING)
        try:
            self._writer.populate(playlist_id, result.hits)
        except PlaylistWriteError as e:
            self._transition(ConversionState.INSERT_FAILED_ROLLED_BACK)
            return RolledBack(playlist_id, e.failure, e.compensated)

        self._transition(ConversionState.SUCCESS)
        return Success(playlist_id, len(result.hits), len(result.misses))

    def _notify(self, job: ConversionJob, outcome: Success) -> None:
        for hook in self._hooks:
            try:
                hook(job, outcome)
            except Exception as e:
                logger.error(f"Success hook {getattr(hook, '__name__', hook)} failed: {e}")
