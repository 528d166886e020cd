from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from roofedit.domain.geometry import NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    GeoReference,
    LinearFeatureSet,
    Measurement,
    MeasurementSummary,
    RoofFacet,
)
from roofedit.extensions import db
from roofedit.storage.protocols import MeasurementStoreError, SaveOutcome, assemble_measurement

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeasurementRecord(db.Model):
    """Latest snapshot of a measurement; saves overwrite it (last write wins)."""

    __tablename__ = "measurements"

    id = db.Column(db.String(64), primary_key=True)
    payload = db.Column(db.JSON, nullable=False)
    total_area = db.Column(db.Float, nullable=False, default=0.0)
    facet_count = db.Column(db.Integer, nullable=False, default=0)
    roof_type = db.Column(db.String(32))
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_summary_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "savedAt": self.updated_at.isoformat() if self.updated_at else None,
            "summary": (self.payload or {}).get("summary"),
        }


class SqlMeasurementStore:
    """Measurement store backed by the application database."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

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
        payload = measurement.to_storage_json()
        payload["summary"] = summary.to_storage_json()
        try:
            record = self.session.get(MeasurementRecord, measurement_id)
            if record is None:
                record = MeasurementRecord(id=measurement_id, version=0)
                self.session.add(record)
            record.payload = payload
            record.total_area = summary.total_area
            record.facet_count = summary.facet_count
            record.roof_type = summary.roof_type.roof_type
            record.version = (record.version or 0) + 1
            record.updated_at = _utcnow()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise MeasurementStoreError(f"Failed to save measurement {measurement_id}: {exc}") from exc

        return SaveOutcome(
            ok=True,
            measurement_id=measurement_id,
            version=record.version,
            saved_at=record.updated_at,
        )

    def load(self, measurement_id: str) -> Optional[Measurement]:
        try:
            record = self.session.get(MeasurementRecord, measurement_id)
        except SQLAlchemyError as exc:
            raise MeasurementStoreError(f"Failed to load measurement {measurement_id}: {exc}") from exc
        if record is None:
            return None
        return Measurement.from_storage_json(record.payload)

    def list_summaries(self) -> List[Dict[str, Any]]:
        try:
            records = self.session.execute(
                db.select(MeasurementRecord).order_by(MeasurementRecord.updated_at.desc())
            ).scalars()
            return [record.to_summary_json() for record in records]
        except SQLAlchemyError as exc:
            raise MeasurementStoreError(f"Failed to list measurements: {exc}") from exc
