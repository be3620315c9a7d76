#!/usr/bin/env python3
"""Playlist Converter - Entry Point"""

import fcntl
import hashlib
import logging
import os
import sys
import time
from pathlib import Path

from clients.spotify import SpotifyAuthError, SpotifyClient
from clients.youtube import YouTubeAuthError, YouTubeClient
from core.cache import SearchCache
from core.errors import ServiceError
from core.matcher import DEFAULT_MAX_WORKERS, CatalogMatcher, MatchCoordinator
from core.models import AuthorizationState, ConversionJob, Service, Success
from core.orchestrator import ConversionOrchestrator
from core.status import write_error_status, write_running_status, write_status
from core.writer import PlaylistWriter

logger = logging.getLogger(__name__)

STALE_LOCK_SECONDS = 1800


def data_dir() -> Path:
    return Path(os.environ.get("DATA_DIR", "./data"))


def setup_logging() -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(directory / "playlist_converter.log", encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def lock_path(job: ConversionJob) -> Path:
    key = f"{job.user_id}:{job.source_playlist_id}:{job.destination.value}"
    return data_dir() / f".convert_{hashlib.sha1(key.encode()).hexdigest()[:12]}.lock"


def acquire_lock(path: Path) -> int | None:
    try:
        # Check for stale lock (older than 30 min = likely orphaned)
        if path.exists():
            age = time.time() - path.stat().st_mtime
            if age > STALE_LOCK_SECONDS:
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                path.unlink(missing_ok=True)

        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_CREAT | os.O_RDWR)
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int, path: Path) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to release lock {path}: {e}")


class ConfigError(Exception):
    pass


def load_config() -> dict:
    required = ["SOURCE_SERVICE", "SOURCE_PLAYLIST_ID", "PLAYLIST_TITLE"]
    config = {}
    missing = []

    for var in required:
        value = os.environ.get(var)
        if value:
            config[var] = value
        else:
            missing.append(var)

    if missing:
        raise ConfigError(f"Missing config: {', '.join(missing)}")

    try:
        config["SOURCE_SERVICE"] = Service(config["SOURCE_SERVICE"].lower())
    except ValueError:
        raise ConfigError(f"SOURCE_SERVICE must be one of: {', '.join(s.value for s in Service)}")

    try:
        config["MAX_SEARCH_WORKERS"] = int(os.environ.get("MAX_SEARCH_WORKERS", DEFAULT_MAX_WORKERS))
        config["REQUEST_TIMEOUT"] = float(os.environ.get("REQUEST_TIMEOUT", 30))
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting: {e}")

    config["USER_ID"] = os.environ.get("USER_ID", "local")
    config["SPOTIFY_ACCESS_TOKEN"] = os.environ.get("SPOTIFY_ACCESS_TOKEN", "")
    config["YOUTUBE_REFRESH_TOKEN"] = os.environ.get("YOUTUBE_REFRESH_TOKEN", "")
    return config


def build_client(service: Service, config: dict) -> SpotifyClient | YouTubeClient:
    if service is Service.SPOTIFY:
        return SpotifyClient(config["SPOTIFY_ACCESS_TOKEN"], timeout=config["REQUEST_TIMEOUT"])
    return YouTubeClient(config["YOUTUBE_REFRESH_TOKEN"])


def authorization_state(config: dict) -> AuthorizationState:
    connected = []
    if config["SPOTIFY_ACCESS_TOKEN"]:
        connected.append(Service.SPOTIFY)
    if config["YOUTUBE_REFRESH_TOKEN"]:
        connected.append(Service.YOUTUBE)
    return AuthorizationState.for_user(config["USER_ID"], *connected)


def build_orchestrator(destination, auth, cache: SearchCache | None,
                       max_workers: int) -> ConversionOrchestrator:
    coordinator = MatchCoordinator(CatalogMatcher(destination, cache), max_workers=max_workers)
    return ConversionOrchestrator(coordinator, PlaylistWriter(destination), auth)


def main() -> int:
    setup_logging()
    status_file = data_dir() / "convert_status.json"

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(str(e))
        write_error_status(str(e), status_file)
        return 1

    source_service = config["SOURCE_SERVICE"]
    job = ConversionJob(
        source=source_service,
        destination=source_service.other(),
        playlist_title=config["PLAYLIST_TITLE"],
        source_playlist_id=config["SOURCE_PLAYLIST_ID"],
        user_id=config["USER_ID"],
    )

    path = lock_path(job)
    lock_fd = acquire_lock(path)
    if lock_fd is None:
        logger.warning("Same conversion already running, exiting")
        return 0

    try:
        write_running_status(job, status_file)

        try:
            source = build_client(job.source, config)
            destination = build_client(job.destination, config)
        except (SpotifyAuthError, YouTubeAuthError) as e:
            logger.error(f"Client setup failed: {e}")
            write_error_status(f"Client setup failed: {e}", status_file)
            return 1

        try:
            tracks = source.list_tracks(job.source_playlist_id)
        except ServiceError as e:
            logger.error(f"Failed to read source playlist: {e.failure.describe()}")
            write_error_status(e.failure.describe(), status_file)
            return 1

        cache = SearchCache(data_dir() / ".search_cache.json")
        orchestrator = build_orchestrator(destination, authorization_state(config), cache,
                                          config["MAX_SEARCH_WORKERS"])

        def record_new_playlist(job: ConversionJob, outcome: Success) -> None:
            # Readers of cached playlist listings refetch when this changes
            (data_dir() / "playlists_last_updated").write_text(f"{time.time():.0f}\n")
            logger.info(f"New {job.destination.display_name} playlist '{job.playlist_title}' "
                        f"is {outcome.playlist_id}")

        orchestrator.add_success_hook(record_new_playlist)

        outcome = orchestrator.run(job, tracks)
        cache.save()
        write_status(job, outcome, status_file)

        if isinstance(outcome, Success):
            return 0
        logger.warning(outcome.message)
        return 1

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        write_error_status(f"Unexpected error: {e}", status_file)
        return 1
    finally:
        release_lock(lock_fd, path)


if __name__ == "__main__":
    sys.exit(main())
