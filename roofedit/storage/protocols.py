from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from roofedit.domain.geometry import NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    GeoReference,
    LinearFeatureSet,
    Measurement,
    MeasurementSummary,
    RoofFacet,
)


class MeasurementStoreError(Exception):
    """Raised when a measurement cannot be persisted or read back."""


@dataclass(frozen=True)
class SaveOutcome:
    """Result of one save attempt, as reported by the persistence gate."""

    ok: bool
    measurement_id: str
    version: Optional[int] = None
    message: str = ""
    saved_at: Optional[datetime] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'measurementId': self.measurement_id,
            'version': self.version,
            'message': self.message,
            'savedAt': self.saved_at.isoformat() if self.saved_at else None,
        }


class FileStorageGateway(Protocol):
    """Interface for file storage implementations."""

    def save_bytes(self, data: bytes, destination: Path) -> Path:
        ...

    def read_bytes(self, path: Path) -> bytes:
        ...

    def exists(self, path: Path) -> bool:
        ...


class MeasurementStore(Protocol):
    """Persists measurement snapshots; saving the same snapshot twice is harmless."""

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
        ...

    def load(self, measurement_id: str) -> Optional[Measurement]:
        ...

    def list_summaries(self) -> List[Dict[str, Any]]:
        ...


class MeasurementValidator(Protocol):
    def validate(self, measurement: Measurement):
        ...


class ImageProvider(Protocol):
    def dimensions(self, image_ref: str) -> Tuple[int, int]:
        ...


def assemble_measurement(
    measurement_id: str,
    facets: Sequence[RoofFacet],
    linear_features: LinearFeatureSet,
    metadata: Dict[str, Any],
    boundary: Sequence[NormalizedPoint] = (),
    annotations: Sequence[Annotation] = (),
    reference: Optional[GeoReference] = None,
) -> Measurement:
    """Rebuild the aggregate from the pieces handed to ``MeasurementStore.save``."""
    return Measurement(
        id=measurement_id,
        facets=tuple(facets),
        linear_features=linear_features,
        boundary=tuple(boundary),
        annotations=tuple(annotations),
        reference=reference,
        metadata=dict(metadata),
    )


def save_snapshot(store: MeasurementStore, measurement: Measurement) -> SaveOutcome:
    """Hand a full snapshot to a store."""
    return store.save(
        measurement.id,
        measurement.facets,
        measurement.linear_features,
        measurement.summary,
        measurement.metadata,
        boundary=measurement.boundary,
        annotations=measurement.annotations,
        reference=measurement.reference,
    )
