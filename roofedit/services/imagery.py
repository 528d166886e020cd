from __future__ import annotations

import io
import uuid
from pathlib import Path
from typing import Final, Tuple

from flask import current_app
from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from roofedit.domain.images import StoredImage
from roofedit.storage import LocalFileStorage, LocalFileStorageError
from roofedit.storage.protocols import FileStorageGateway

_ALLOWED_EXTENSIONS: Final[set[str]] = {"png", "jpg", "jpeg", "tif", "tiff"}
_PASSTHROUGH_EXTENSIONS: Final[set[str]] = {"png", "jpg", "jpeg"}
DEFAULT_PNG_COLORS: Final[int] = 256


class ImageryError(Exception):
    """Base exception raised for satellite image issues."""


class UnsupportedImageError(ImageryError):
    """Raised when an uploaded image cannot be processed."""


class ImageNotFoundError(ImageryError):
    """Raised when an image reference does not resolve to a stored file."""


def encode_png(image: Image.Image) -> bytes:
    """Encode a PIL image as a palette-quantised, compressed PNG."""
    processed = image
    if processed.mode not in ("RGB", "L"):
        processed = processed.convert("RGB")
    if processed.mode == "RGB":
        processed = processed.quantize(
            colors=DEFAULT_PNG_COLORS,
            method=Image.Quantize.MEDIANCUT,
            dither=Image.Dither.NONE,
        )
    buffer = io.BytesIO()
    processed.save(buffer, format="PNG", optimize=True, compress_level=9)
    return buffer.getvalue()


class ImageryService:
    """
    Stores satellite rasters uploaded for a measurement and reports their size.

    Acts as the image provider of the editor: the raster's pixel dimensions
    become the canvas the normalized geometry is scaled to.
    """

    def __init__(self, storage: FileStorageGateway, image_root: Path) -> None:
        self._storage = storage
        self._image_root = image_root.resolve()

    @classmethod
    def from_app_config(cls) -> "ImageryService":
        image_dir = Path(current_app.config["IMAGE_DIR"])
        if not image_dir.is_absolute():
            image_dir = Path(current_app.instance_path) / image_dir
        return cls(storage=LocalFileStorage(image_dir), image_root=image_dir)

    def save_image(self, measurement_id: str, file_storage: FileStorage) -> StoredImage:
        if not file_storage or not file_storage.filename:
            raise UnsupportedImageError("No image was provided.")

        original_filename = secure_filename(file_storage.filename)
        extension = self._extract_extension(original_filename)
        if extension not in _ALLOWED_EXTENSIONS:
            raise UnsupportedImageError("Unsupported image type.")

        content = file_storage.read()
        if not content:
            raise ImageryError("Uploaded file is empty.")

        warnings: list[str] = []
        if extension in _PASSTHROUGH_EXTENSIONS:
            data = content
            was_converted = False
        else:
            data = self._convert_to_png(content)
            extension = "png"
            was_converted = True
            warnings.append("Image was converted to PNG.")

        width, height = self._extract_dimensions(data)
        relative_path = Path(secure_filename(measurement_id) or "unassigned") / f"{uuid.uuid4().hex}.{extension}"
        try:
            self._storage.save_bytes(data, relative_path)
        except LocalFileStorageError as exc:
            raise ImageryError("Failed to write uploaded image.") from exc

        current_app.logger.info(
            f"Stored {width}x{height} image for measurement {measurement_id} at {relative_path}"
        )
        return StoredImage(
            measurement_id=measurement_id,
            original_filename=original_filename,
            stored_filename=relative_path.name,
            stored_relative_path=relative_path.as_posix(),
            was_converted=was_converted,
            warnings=warnings,
            image_width=width,
            image_height=height,
        )

    def dimensions(self, image_ref: str) -> Tuple[int, int]:
        """Pixel width and height of a stored image, by its relative path."""
        path = (self._image_root / image_ref).resolve()
        if self._image_root not in path.parents or not self._storage.exists(path):
            raise ImageNotFoundError(f"Image {image_ref} not found.")
        return self._extract_dimensions(path.read_bytes())

    @staticmethod
    def _extract_extension(filename: str) -> str:
        if "." not in filename:
            return ""
        return filename.rsplit(".", 1)[1].lower()

    @staticmethod
    def _extract_dimensions(raw_data: bytes) -> Tuple[int, int]:
        try:
            with Image.open(io.BytesIO(raw_data)) as image:
                return image.width, image.height
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise UnsupportedImageError("File is not a readable image.") from exc

    @staticmethod
    def _convert_to_png(raw_bytes: bytes) -> bytes:
        try:
            with Image.open(io.BytesIO(raw_bytes)) as image:
                return encode_png(image)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise UnsupportedImageError("Failed to convert image to PNG.") from exc
