"""Shared fixtures: in-memory destination catalog and job factories."""

import threading

import pytest

from core.errors import NotFoundError
from core.models import (AuthorizationState, CatalogItem, ConversionJob,
                         SearchQuery, Service, TrackDescriptor)


class FakeCatalog:
    """Destination catalog driven by a query-title -> item/exception table.

    Titles missing from the table are not found. Every call is recorded.
    """

    def __init__(self, service=Service.YOUTUBE, results=None, create=None, add=None, delete=None):
        self.service = service
        self.results = results or {}
        self.create_result = create if create is not None else "P1"
        self.add_error = add
        self.delete_error = delete
        self.searches: list[SearchQuery] = []
        self.created: list[tuple[str, str, str]] = []
        self.added: list[tuple[str, list[str]]] = []
        self.deleted: list[str] = []
        self._lock = threading.Lock()
        self._playlist_count = 0

    def search(self, query):
        with self._lock:
            self.searches.append(query)
        result = self.results.get(query.title)
        if result is None:
            raise NotFoundError(self.service, "search", f"no results for '{query.title}'")
        if isinstance(result, Exception):
            raise result
        return result

    def create_playlist(self, title, description, visibility="private"):
        with self._lock:
            self.created.append((title, description, visibility))
            self._playlist_count += 1
        if isinstance(self.create_result, Exception):
            raise self.create_result
        if self._playlist_count > 1:
            return f"{self.create_result}-{self._playlist_count}"
        return self.create_result

    def add_items(self, playlist_id, item_ids):
        self.added.append((playlist_id, list(item_ids)))
        if self.add_error is not None:
            raise self.add_error

    def delete_playlist(self, playlist_id):
        self.deleted.append(playlist_id)
        if self.delete_error is not None:
            raise self.delete_error


def item(item_id, title=""):
    return CatalogItem(item_id=item_id, title=title or item_id)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def tracks():
    return [TrackDescriptor("Song A", "X"), TrackDescriptor("Song B", "Y")]


@pytest.fixture
def job():
    return ConversionJob(
        source=Service.SPOTIFY,
        destination=Service.YOUTUBE,
        playlist_title="Road Trip",
        source_playlist_id="src123",
        user_id="user-1",
    )


@pytest.fixture
def auth():
    return AuthorizationState.for_user("user-1", Service.SPOTIFY, Service.YOUTUBE)
