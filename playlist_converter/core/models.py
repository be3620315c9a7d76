"""Data models for conversion jobs."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Union

# Symbols stripped from video titles before they are used as search queries
_TITLE_SYMBOLS = re.compile(r"[.,/#!$%^&*;:{}=\-_`'~()\[\]【】『』]")


class Service(str, Enum):
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"

    @property
    def display_name(self) -> str:
        return "Spotify" if self is Service.SPOTIFY else "YouTube"

    def other(self) -> "Service":
        return Service.YOUTUBE if self is Service.SPOTIFY else Service.SPOTIFY


class FailureKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


class Stage(str, Enum):
    SEARCH = "search"
    CREATE = "create"
    INSERT = "insert"


def sanitize_title(title: str) -> str:
    """Strip bracket and punctuation symbols from a raw video title."""
    return _TITLE_SYMBOLS.sub("", title).strip()


@dataclass(frozen=True)
class TrackDescriptor:
    """A track from the source playlist."""
    title: str
    artist: str = ""

    @classmethod
    def from_video_title(cls, raw_title: str) -> "TrackDescriptor":
        return cls(title=sanitize_title(raw_title))

    def label(self) -> str:
        return f"{self.title} by {self.artist}" if self.artist else self.title


@dataclass(frozen=True)
class SearchQuery:
    """One catalog search. Each catalog renders it in its own syntax."""
    title: str
    artist: str = ""


@dataclass(frozen=True)
class CatalogItem:
    """A destination catalog item with its display metadata."""
    item_id: str
    title: str
    artist: str = ""
    album: str = ""
    thumbnail: str = ""


@dataclass(frozen=True)
class Hit:
    descriptor: TrackDescriptor
    item: CatalogItem

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass(frozen=True)
class Miss:
    descriptor: TrackDescriptor
    reason: FailureKind  # NOT_FOUND or TRANSIENT


MatchResult = Union[Hit, Miss]


@dataclass
class SearchResult:
    """Hits and misses collected by a completed search phase."""
    hits: list[Hit] = field(default_factory=list)
    misses: list[Miss] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.hits) + len(self.misses)


@dataclass(frozen=True)
class Failure:
    """A classified failure of one call to one service."""
    kind: FailureKind
    service: Service
    operation: str
    message: str = ""

    def describe(self) -> str:
        name = self.service.display_name
        if self.kind is FailureKind.UNAUTHORIZED:
            text = f"{name} session expired during {self.operation}, please reconnect {name}"
        elif self.kind is FailureKind.QUOTA_EXCEEDED:
            text = f"{name} quota exceeded during {self.operation}, try again later"
        elif self.kind is FailureKind.NOT_FOUND:
            text = f"Nothing found on {name} during {self.operation}"
        else:
            text = f"{name} {self.operation} failed"
        return f"{text}: {self.message}" if self.message else text


@dataclass(frozen=True)
class ConversionJob:
    """A single confirmed conversion request. Never persisted."""
    source: Service
    destination: Service
    playlist_title: str
    source_playlist_id: str
    user_id: str

    @property
    def description(self) -> str:
        return (f"Playlist converted from {self.source.display_name} to "
                f"{self.destination.display_name} with playlist-converter")


@dataclass(frozen=True)
class Success:
    playlist_id: str
    hit_count: int
    miss_count: int

    @property
    def message(self) -> str:
        return f"Created playlist {self.playlist_id}: {self.hit_count} tracks found, {self.miss_count} missing"


@dataclass(frozen=True)
class Aborted:
    """Search phase stopped by an expired session or exhausted quota."""
    reason: Failure

    @property
    def message(self) -> str:
        return f"Conversion aborted. {self.reason.describe()}"


@dataclass(frozen=True)
class Failed:
    stage: Stage
    reason: Failure

    @property
    def message(self) -> str:
        return f"Conversion failed at {self.stage.value}. {self.reason.describe()}"


@dataclass(frozen=True)
class RolledBack:
    """Insertion failed after the playlist was created; the playlist was deleted."""
    playlist_id: str
    reason: Failure
    compensated: bool = True

    @property
    def message(self) -> str:
        text = f"Conversion failed while adding tracks. {self.reason.describe()}"
        if not self.compensated:
            text += f" (playlist {self.playlist_id} could not be removed)"
        return text


ConversionOutcome = Union[Success, Aborted, Failed, RolledBack]


@dataclass(frozen=True)
class AuthorizationState:
    """Read-only per (user, service) authorization flags."""
    authorized: frozenset[tuple[str, Service]] = frozenset()

    @classmethod
    def for_user(cls, user_id: str, *services: Service) -> "AuthorizationState":
        return cls(frozenset((user_id, s) for s in services))

    def is_authorized(self, user_id: str, service: Service) -> bool:
        return (user_id, service) in self.authorized


class AuthProvider(Protocol):
    def is_authorized(self, user_id: str, service: Service) -> bool: ...


class SourceCatalog(Protocol):
    def list_tracks(self, playlist_id: str) -> list[TrackDescriptor]: ...


class DestinationCatalog(Protocol):
    service: Service

    def search(self, query: SearchQuery) -> CatalogItem: ...
    def create_playlist(self, title: str, description: str, visibility: str = "private") -> str: ...
    def add_items(self, playlist_id: str, item_ids: list[str]) -> None: ...
    def delete_playlist(self, playlist_id: str) -> None: ...
