from roofedit.storage.local import LocalFileStorage, LocalFileStorageError, LocalMeasurementStore
from roofedit.storage.protocols import (
    FileStorageGateway,
    ImageProvider,
    MeasurementStore,
    MeasurementStoreError,
    SaveOutcome,
)

__all__ = [
    "FileStorageGateway",
    "ImageProvider",
    "LocalFileStorage",
    "LocalFileStorageError",
    "LocalMeasurementStore",
    "MeasurementStore",
    "MeasurementStoreError",
    "SaveOutcome",
]
