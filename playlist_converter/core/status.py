"""Status file writer for conversion runs"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from core.models import (Aborted, ConversionJob, ConversionOutcome, Failed,
                         RolledBack, Success)


def outcome_status(outcome: ConversionOutcome) -> dict:
    data = {
        "status": type(outcome).__name__.lower(),
        "message": outcome.message,
        "playlist_id": None,
        "hit_count": 0,
        "miss_count": 0,
        "stage": None,
        "reason": None,
        "service": None,
        "compensated": None,
    }
    if isinstance(outcome, Success):
        data.update(playlist_id=outcome.playlist_id, hit_count=outcome.hit_count,
                    miss_count=outcome.miss_count)
        return data

    reason = outcome.reason
    data.update(reason=reason.kind.value, service=reason.service.value)
    if isinstance(outcome, Aborted):
        data["stage"] = "search"
    elif isinstance(outcome, Failed):
        data["stage"] = outcome.stage.value
    elif isinstance(outcome, RolledBack):
        data.update(stage="insert", playlist_id=outcome.playlist_id,
                    compensated=outcome.compensated)
    return data


def write_status(job: ConversionJob, outcome: ConversionOutcome, status_file: Path) -> bool:
    data = {
        **outcome_status(outcome),
        "playlist_title": job.playlist_title,
        "source": job.source.value,
        "destination": job.destination.value,
        "finished_at": datetime.now(timezone.utc).isoformat(),
    }
    return _atomic_write(status_file, data)


def write_running_status(job: ConversionJob, status_file: Path) -> bool:
    data = {
        "status": "running",
        "message": f"Converting '{job.playlist_title}'",
        "playlist_title": job.playlist_title,
        "source": job.source.value,
        "destination": job.destination.value,
        "started_at": datetime.now(timezone.utc).isoformat(),
    }
    return _atomic_write(status_file, data)


def write_error_status(message: str, status_file: Path) -> bool:
    data = {
        "status": "error",
        "message": message,
        "finished_at": datetime.now(timezone.utc).isoformat(),
    }
    return _atomic_write(status_file, data)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".status_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return True
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except Exception:
        return False
