from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class StoredImage:
    """Metadata returned after persisting an uploaded satellite image."""

    measurement_id: str
    original_filename: str
    stored_filename: str
    stored_relative_path: str
    was_converted: bool
    warnings: List[str]
    image_width: int
    image_height: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "measurementId": self.measurement_id,
            "originalFilename": self.original_filename,
            "storedFilename": self.stored_filename,
            "storedPath": self.stored_relative_path,
            "wasConverted": self.was_converted,
            "warnings": list(self.warnings),
            "imageWidth": self.image_width,
            "imageHeight": self.image_height,
        }
