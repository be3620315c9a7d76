"""Spotify Web API Client"""

import logging
from typing import Any

import requests

from core.errors import NotFoundError, TransientError
from core.failures import classify, error_reasons
from core.models import CatalogItem, SearchQuery, Service, TrackDescriptor

logger = logging.getLogger(__name__)

API_URL = "https://api.spotify.com/v1"
MAX_ITEMS_PER_REQUEST = 100
DEFAULT_TIMEOUT = 30.0


class SpotifyAuthError(Exception):
    pass


class SpotifyClient:
    """Spotify Web API client using a bearer token obtained elsewhere."""

    service = Service.SPOTIFY

    def __init__(self, access_token: str, timeout: float = DEFAULT_TIMEOUT,
                 session: requests.Session | None = None):
        if not access_token:
            raise SpotifyAuthError("No Spotify access token configured")
        self._timeout = timeout
        self._user_id: str | None = None
        self._session = session or requests.Session()
        self._session.headers.update({"authorization": f"Bearer {access_token}"})
        logger.info("Spotify client initialized")

    def _request(self, method: str, path: str, operation: str, **kwargs) -> Any:
        url = path if path.startswith("http") else f"{API_URL}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientError(Service.SPOTIFY, operation, f"network error: {e}") from e

        if response.status_code >= 400:
            reasons, message = error_reasons(response.content)
            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                if retry_after:
                    message = f"{message} (retry after {retry_after}s)".strip()
            logger.error(f"Spotify {operation} error {response.status_code}: {message}")
            raise classify(Service.SPOTIFY, operation, response.status_code, reasons, message)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def current_user_id(self) -> str:
        if self._user_id is None:
            profile = self._request("GET", "/me", "get profile")
            self._user_id = profile["id"]
        return self._user_id

    @staticmethod
    def _render_query(query: SearchQuery) -> str:
        # No artist means a free-text search on a sanitized video title
        if not query.artist:
            return query.title
        return f"track:{query.title} artist:{query.artist}"

    def search(self, query: SearchQuery) -> CatalogItem:
        """Return the top track for the query. Raises NotFoundError."""
        q = self._render_query(query)
        data = self._request("GET", "/search", "search",
                             params={"q": q, "type": "track", "limit": 1, "offset": 0})

        items = (data or {}).get("tracks", {}).get("items", [])
        if not items:
            raise NotFoundError(Service.SPOTIFY, "search", f"no tracks found for '{q}'")

        item = items[0]
        album = item.get("album", {})
        images = album.get("images", [])
        return CatalogItem(
            item_id=item["uri"],
            title=item.get("name", ""),
            artist=", ".join(a.get("name", "") for a in item.get("artists", [])),
            album=album.get("name", ""),
            thumbnail=images[0].get("url", "") if images else "",
        )

    def list_tracks(self, playlist_id: str) -> list[TrackDescriptor]:
        tracks = []
        url = f"/playlists/{playlist_id}/tracks"
        params: dict | None = {"limit": 100, "offset": 0}

        while url:
            data = self._request("GET", url, "list playlist tracks", params=params)
            for item in data.get("items", []):
                track = self._extract_track(item)
                if track:
                    tracks.append(track)
            # "next" already carries the paging parameters
            url = data.get("next")
            params = None

        logger.info(f"Retrieved {len(tracks)} tracks from Spotify playlist {playlist_id}")
        return tracks

    def _extract_track(self, item: dict) -> TrackDescriptor | None:
        track = item.get("track") or {}
        name = track.get("name", "")
        if not name or track.get("type", "track") != "track":
            return None
        artists = track.get("artists") or []
        artist = artists[0].get("name", "") if artists else ""
        return TrackDescriptor(title=name, artist=artist)

    def create_playlist(self, title: str, description: str, visibility: str = "private") -> str:
        user_id = self.current_user_id()
        data = self._request("POST", f"/users/{user_id}/playlists", "create playlist", json={
            "name": title,
            "description": description,
            "public": visibility == "public",
            "collaborative": False,
        })
        return data["id"]

    def add_items(self, playlist_id: str, item_ids: list[str]) -> None:
        """Add track URIs in chunks of 100, each chunk inserted at position 0."""
        for i in range(0, len(item_ids), MAX_ITEMS_PER_REQUEST):
            chunk = item_ids[i:i + MAX_ITEMS_PER_REQUEST]
            self._request("POST", f"/playlists/{playlist_id}/tracks", "add to playlist",
                          json={"uris": chunk, "position": 0})
            logger.debug(f"Added {len(chunk)} tracks to {playlist_id}")

    def delete_playlist(self, playlist_id: str) -> None:
        # Spotify has no delete; unfollowing removes it from the user's library
        self._request("DELETE", f"/playlists/{playlist_id}/followers", "delete playlist")
