"""
YouTube Data API v3 Client

Serves as both source (playlist items) and destination (search, create,
insert, delete) catalog. Failed calls are classified into the service
errors the orchestrator understands.

Quota costs:
- search.list: 100 units
- playlistItems.list: 1 unit
- playlists.insert / playlists.delete: 50 units
- playlistItems.insert: 50 units (one call per video)
"""

import html
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.errors import (NotFoundError, TransientError, UnauthorizedError)
from core.failures import classify, error_reasons
from core.models import CatalogItem, SearchQuery, Service, TrackDescriptor

logger = logging.getLogger(__name__)

SCRIPT_DIR = Path(__file__).parent.parent
TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/youtube"]
MUSIC_CATEGORY_ID = "10"
UNAVAILABLE_TITLES = frozenset({"Deleted video", "Private video"})


class YouTubeAuthError(Exception):
    """YouTube client could not be configured."""
    pass


def _load_client_credentials() -> tuple[str, str]:
    """Load OAuth client credentials from env vars or client_secrets.json."""
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if client_id and client_secret:
        return client_id, client_secret

    secrets_file = SCRIPT_DIR / "client_secrets.json"
    if secrets_file.exists():
        try:
            secrets = json.loads(secrets_file.read_text())
            creds = secrets.get("installed") or secrets.get("web")
            if creds:
                return creds["client_id"], creds["client_secret"]
        except Exception as e:
            logger.warning(f"Failed to parse client_secrets.json: {e}")

    raise YouTubeAuthError(
        "OAuth credentials not found. Set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET "
        "or provide client_secrets.json"
    )


def _best_thumbnail(thumbnails: dict) -> str:
    for size in ("maxres", "standard", "high", "medium", "default"):
        if thumbnails.get(size):
            return thumbnails[size].get("url", "")
    return ""


class YouTubeClient:
    """YouTube Data API client.

    httplib2 connections are not thread-safe, so each thread that talks to
    the API gets its own service object.
    """

    service = Service.YOUTUBE

    def __init__(self, refresh_token: str | None = None,
                 service_factory: Callable[[], Any] | None = None):
        if service_factory is None:
            if not refresh_token:
                raise YouTubeAuthError("No YouTube refresh token configured")
            try:
                client_id, client_secret = _load_client_credentials()
                credentials = Credentials(
                    token=None,
                    refresh_token=refresh_token,
                    token_uri=TOKEN_URI,
                    client_id=client_id,
                    client_secret=client_secret,
                    scopes=SCOPES
                )
            except YouTubeAuthError:
                raise
            except Exception as e:
                raise YouTubeAuthError(f"Failed to authenticate: {e}")

            def service_factory():
                return build("youtube", "v3", credentials=credentials, cache_discovery=False)

        self._service_factory = service_factory
        self._local = threading.local()
        logger.info("YouTube client initialized")

    @property
    def _service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service

    def _execute(self, make_request: Callable[[], Any], operation: str, retries: int = 1) -> Any:
        """Execute a request, translating failures into service errors.

        Only idempotent reads should pass retries > 1; a retried insert may
        land twice.
        """
        for attempt in range(retries):
            try:
                return make_request().execute()
            except HttpError as e:
                status = e.resp.status if e.resp is not None else 0
                reasons, message = error_reasons(e.content)
                error = classify(Service.YOUTUBE, operation, int(status), reasons, message)

                if isinstance(error, TransientError) and int(status) >= 500 and attempt < retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Server error on {operation}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise error from e
            except RefreshError as e:
                raise UnauthorizedError(Service.YOUTUBE, operation, f"token refresh failed: {e}") from e
            except (httplib2.HttpLib2Error, TransportError, OSError) as e:
                if attempt < retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {operation}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise TransientError(Service.YOUTUBE, operation, f"network error: {e}") from e

        raise TransientError(Service.YOUTUBE, operation, f"failed after {retries} attempts")

    def search(self, query: SearchQuery) -> CatalogItem:
        """Return the top video for the query. Raises NotFoundError."""
        q = f"{query.artist} {query.title}".strip()

        def do_search():
            return self._service.search().list(
                part="snippet",
                q=q,
                type="video",
                videoCategoryId=MUSIC_CATEGORY_ID,
                maxResults=1
            )

        response = self._execute(do_search, "search", retries=3)
        items = [i for i in response.get("items", []) if i.get("id", {}).get("videoId")]
        if not items:
            raise NotFoundError(Service.YOUTUBE, "search", f"no results for '{q}'")

        item = items[0]
        snippet = item.get("snippet", {})
        return CatalogItem(
            item_id=item["id"]["videoId"],
            title=html.unescape(snippet.get("title", "")),
            artist=html.unescape(snippet.get("channelTitle", "")),
            thumbnail=_best_thumbnail(snippet.get("thumbnails", {})),
        )

    def list_tracks(self, playlist_id: str) -> list[TrackDescriptor]:
        """Get all videos of a playlist as sanitized track descriptors."""
        tracks = []
        page_token = None

        while True:
            def do_list():
                return self._service.playlistItems().list(
                    part="snippet",
                    playlistId=playlist_id,
                    maxResults=50,
                    pageToken=page_token
                )

            response = self._execute(do_list, "list playlist items", retries=3)
            for item in response.get("items", []):
                title = html.unescape(item.get("snippet", {}).get("title", ""))
                if not title or title in UNAVAILABLE_TITLES:
                    continue
                track = TrackDescriptor.from_video_title(title)
                if track.title:
                    tracks.append(track)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Retrieved {len(tracks)} tracks from YouTube playlist {playlist_id}")
        return tracks

    def create_playlist(self, title: str, description: str, visibility: str = "private") -> str:
        def do_insert():
            return self._service.playlists().insert(
                part="snippet,status",
                body={
                    "snippet": {"title": title, "description": description},
                    "status": {"privacyStatus": visibility},
                }
            )

        response = self._execute(do_insert, "create playlist")
        return response["id"]

    def add_items(self, playlist_id: str, item_ids: list[str]) -> None:
        """Insert videos in order. The API takes one video per call."""
        for video_id in item_ids:
            def do_insert(video_id=video_id):
                return self._service.playlistItems().insert(
                    part="snippet",
                    body={
                        "snippet": {
                            "playlistId": playlist_id,
                            "resourceId": {"kind": "youtube#video", "videoId": video_id}
                        }
                    }
                )

            self._execute(do_insert, "add to playlist")
            logger.debug(f"Added: {video_id}")

    def delete_playlist(self, playlist_id: str) -> None:
        def do_delete():
            return self._service.playlists().delete(id=playlist_id)

        self._execute(do_delete, "delete playlist")
