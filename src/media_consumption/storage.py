"""Snapshot files written by the fetch tool and read by the dashboard."""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple, Optional

from pydantic import ValidationError

from .constants import SNAPSHOT_FILES, ContentType
from .models import SnapshotMetadata

logger = logging.getLogger(__name__)


class SnapshotNotFoundError(Exception):
    """No snapshot file exists for a content type."""

    pass


class Snapshot(NamedTuple):
    records: list[dict]
    metadata: Optional[SnapshotMetadata]


def snapshot_records(data) -> list[dict]:
    """Records of a snapshot body.

    Accepts ``response.data.data``, ``response.data`` as a list, a top-level
    ``data`` list, a bare list and the comics ``readProgress`` list.
    """
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []

    response = data.get("response")
    if isinstance(response, dict):
        inner = response.get("data")
        if isinstance(inner, dict) and isinstance(inner.get("data"), list):
            return inner["data"]
        if isinstance(inner, list):
            return inner

    for key in ("data", "readProgress"):
        if isinstance(data.get(key), list):
            return data[key]
    return []


class SnapshotStore:
    """Layout of the data directory."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    @property
    def posters_dir(self) -> Path:
        return self.data_dir / "posters"

    @property
    def covers_dir(self) -> Path:
        return self.data_dir / "covers"

    def path_for(self, content_type: ContentType) -> Path:
        return self.data_dir / SNAPSHOT_FILES[ContentType(content_type)]

    def ensure_dirs(self) -> None:
        for directory in (self.data_dir, self.posters_dir, self.covers_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def exists(self, content_type: ContentType) -> bool:
        return self.path_for(content_type).exists()

    def save(self, content_type: ContentType, records: list[dict], fetched_at: Optional[datetime] = None) -> Path:
        """Write records with a ``_metadata`` block and return the file path."""
        self.ensure_dirs()
        metadata = SnapshotMetadata(
            last_fetched=fetched_at or datetime.now(timezone.utc),
            item_count=len(records),
        )
        body = {
            "response": {"data": {"data": records}},
            "_metadata": metadata.model_dump(mode="json", by_alias=True),
        }
        path = self.path_for(content_type)
        write_atomic(path, json.dumps(body, indent=2).encode("utf-8"))
        logger.info(f"Saved {len(records)} {ContentType(content_type).value} records to {path}")
        return path

    def load(self, content_type: ContentType) -> Snapshot:
        """Read a snapshot.

        Raises:
            SnapshotNotFoundError: the file is missing or unreadable
        """
        path = self.path_for(content_type)
        if not path.exists():
            raise SnapshotNotFoundError(f"No snapshot at {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read snapshot {path}: {e}")
            raise SnapshotNotFoundError(f"Unreadable snapshot at {path}") from e

        metadata = None
        raw_metadata = data.get("_metadata") if isinstance(data, dict) else None
        if raw_metadata:
            try:
                metadata = SnapshotMetadata.model_validate(raw_metadata)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid snapshot metadata in {path}: {e}")

        return Snapshot(records=snapshot_records(data), metadata=metadata)

    def image_path(self, content_type: ContentType, identity: str) -> Path:
        """Local file for a downloaded poster (movies, TV) or cover (comics)."""
        directory = self.covers_dir if ContentType(content_type) == ContentType.COMICS else self.posters_dir
        return directory / f"{image_file_stem(identity)}.jpg"

    def write_image(self, content_type: ContentType, identity: str, data: bytes) -> Path:
        path = self.image_path(content_type, identity)
        write_atomic(path, data)
        return path


def write_atomic(path: Path, data: bytes) -> None:
    """Write to a temp file in the same directory, then replace.

    Readers never see a partial file and an interrupted write leaves nothing
    at ``path``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def image_file_stem(identity: str) -> str:
    """File-safe name for a poster path like ``/library/metadata/123/thumb/456``."""
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in str(identity).strip("/")) or "unknown"
