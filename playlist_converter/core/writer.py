"""
Playlist Writer

Two strictly sequential steps against the destination catalog:

1. create an empty playlist
2. add the matched items to it

If step 2 fails the playlist from step 1 is deleted before the error is
raised, so callers always see a final state and never roll back themselves.
A failed step 1 leaves nothing behind and nothing is deleted.
"""

import logging

from core.errors import PlaylistWriteError, ServiceError
from core.models import (ConversionJob, DestinationCatalog, Failure,
                         FailureKind, Hit, Stage)

logger = logging.getLogger(__name__)

VISIBILITY = "private"


class Compensator:
    """Undoes playlist creation. Best-effort, never retried."""

    def __init__(self, catalog: DestinationCatalog):
        self._catalog = catalog

    def rollback(self, playlist_id: str) -> bool:
        service = self._catalog.service.display_name
        logger.warning(f"Rolling back: deleting {service} playlist {playlist_id}")
        try:
            self._catalog.delete_playlist(playlist_id)
        except Exception as e:
            logger.error(f"Rollback failed, {service} playlist {playlist_id} left behind: {e}")
            return False
        logger.info(f"Deleted {service} playlist {playlist_id}")
        return True


def _failure_from(exc: Exception, catalog: DestinationCatalog, operation: str) -> Failure:
    if isinstance(exc, ServiceError):
        return exc.failure
    return Failure(FailureKind.TRANSIENT, catalog.service, operation, str(exc))


class PlaylistWriter:
    """Creates the destination playlist and fills it with hits."""

    def __init__(self, catalog: DestinationCatalog, compensator: Compensator | None = None):
        self._catalog = catalog
        self._compensator = compensator or Compensator(catalog)

    def create(self, job: ConversionJob) -> str:
        """Step 1. Raises PlaylistWriteError(stage=CREATE)."""
        try:
            playlist_id = self._catalog.create_playlist(job.playlist_title, job.description, VISIBILITY)
        except Exception as e:
            logger.error(f"Failed to create playlist '{job.playlist_title}': {e}")
            raise PlaylistWriteError(Stage.CREATE, _failure_from(e, self._catalog, "create playlist")) from e

        logger.info(f"Created {self._catalog.service.display_name} playlist "
                    f"'{job.playlist_title}' ({playlist_id})")
        return playlist_id

    def populate(self, playlist_id: str, hits: list[Hit]) -> None:
        """Step 2. On failure compensates, then raises PlaylistWriteError(stage=INSERT)."""
        item_ids = [hit.item_id for hit in hits]
        try:
            self._catalog.add_items(playlist_id, item_ids)
        except Exception as e:
            logger.error(f"Failed to add {len(item_ids)} items to {playlist_id}: {e}")
            failure = _failure_from(e, self._catalog, "add to playlist")
            compensated = self._compensator.rollback(playlist_id)
            raise PlaylistWriteError(Stage.INSERT, failure, playlist_id, compensated) from e

        logger.info(f"Added {len(item_ids)} items to {playlist_id}")

    def create_and_populate(self, job: ConversionJob, hits: list[Hit]) -> str:
        playlist_id = self.create(job)
        self.populate(playlist_id, hits)
        return playlist_id
