from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from werkzeug.utils import secure_filename

from roofedit.domain.geometry import NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    GeoReference,
    LinearFeatureSet,
    Measurement,
    MeasurementSummary,
    RoofFacet,
)
from roofedit.storage.protocols import (
    FileStorageGateway,
    MeasurementStoreError,
    SaveOutcome,
    assemble_measurement,
)

logger = logging.getLogger(__name__)

MAX_VERSION_FILES = 20


class LocalFileStorageError(Exception):
    """Raised when local file storage operations fail."""


class LocalFileStorage(FileStorageGateway):
    """Simple filesystem storage implementation."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def save_bytes(self, data: bytes, destination: Path) -> Path:
        target = self._resolve(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise LocalFileStorageError(f"Unable to write file to {target}") from exc
        return target

    def read_bytes(self, path: Path) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise LocalFileStorageError(f"Unable to read file {target}") from exc

    def exists(self, path: Path) -> bool:
        return self._resolve(path).exists()

    def _resolve(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self._root / path).resolve()


class LocalMeasurementStore:
    """
    JSON file store, one directory per measurement.

    ``current.json`` holds the latest snapshot; every save first copies the
    previous current file to ``version_N.json`` and keeps at most
    ``max_versions`` of those.
    """

    def __init__(self, storage: LocalFileStorage, max_versions: int = MAX_VERSION_FILES) -> None:
        self._storage = storage
        self._max_versions = max_versions

    def save(
        self,
        measurement_id: str,
        facets: Sequence[RoofFacet],
        linear_features: LinearFeatureSet,
        summary: MeasurementSummary,
        metadata: Dict[str, Any],
        *,
        boundary: Sequence[NormalizedPoint] = (),
        annotations: Sequence[Annotation] = (),
        reference: Optional[GeoReference] = None,
    ) -> SaveOutcome:
        measurement = assemble_measurement(
            measurement_id, facets, linear_features, metadata, boundary, annotations, reference
        )
        directory = self._directory(measurement_id)
        current_file = directory / "current.json"

        version = 0
        if self._storage.exists(current_file):
            previous = self._read_json(current_file)
            version = int(previous.get("version", 0))
            self._write_json(previous, directory / f"version_{version}.json")

        document = measurement.to_storage_json()
        document["summary"] = summary.to_storage_json()
        document["version"] = version + 1
        saved_at = datetime.now(timezone.utc)
        document["savedAt"] = saved_at.isoformat()
        self._write_json(document, current_file)
        self._cleanup_old_versions(self._storage.root / directory)

        return SaveOutcome(ok=True, measurement_id=measurement_id, version=version + 1, saved_at=saved_at)

    def load(self, measurement_id: str) -> Optional[Measurement]:
        current_file = self._directory(measurement_id) / "current.json"
        if not self._storage.exists(current_file):
            return None
        return Measurement.from_storage_json(self._read_json(current_file))

    def list_summaries(self) -> List[Dict[str, Any]]:
        summaries = []
        for current_file in sorted(self._storage.root.glob("*/current.json")):
            data = self._read_json(current_file)
            summaries.append({
                "id": data.get("id"),
                "version": data.get("version"),
                "savedAt": data.get("savedAt"),
                "summary": data.get("summary"),
            })
        return summaries

    @staticmethod
    def _directory(measurement_id: str) -> Path:
        safe_name = secure_filename(measurement_id)
        if not safe_name:
            raise MeasurementStoreError(f"Invalid measurement id {measurement_id!r}")
        return Path(safe_name)

    def _read_json(self, path: Path) -> Dict[str, Any]:
        try:
            return json.loads(self._storage.read_bytes(path).decode("utf-8"))
        except (LocalFileStorageError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MeasurementStoreError(f"Failed to read {path}: {exc}") from exc

    def _write_json(self, data: Dict[str, Any], path: Path) -> None:
        payload = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        try:
            self._storage.save_bytes(payload, path)
        except LocalFileStorageError as exc:
            raise MeasurementStoreError(f"Failed to write {path}: {exc}") from exc

    def _cleanup_old_versions(self, directory: Path) -> None:
        """Remove old version files, keeping only the most recent ones."""
        version_files = []
        for file in directory.glob("version_*.json"):
            try:
                version_files.append((int(file.stem.split("_")[1]), file))
            except (ValueError, IndexError):
                continue
        version_files.sort(key=lambda item: item[0])
        for _, file in version_files[:-self._max_versions]:
            try:
                file.unlink()
            except OSError as exc:
                logger.warning("Could not remove old version file %s: %s", file, exc)
