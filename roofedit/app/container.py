from __future__ import annotations

from flask import current_app

from roofedit.services.editor_registry import EditorRegistry
from roofedit.services.imagery import ImageryService
from roofedit.services.measurement_service import MeasurementService

MEASUREMENT_SERVICE_KEY = "measurement_service"
IMAGERY_SERVICE_KEY = "imagery_service"
EDITOR_REGISTRY_KEY = "editor_registry"


def register_services(app) -> None:
    """Pre-instantiate core services and store them on the application."""
    with app.app_context():
        measurement_service = MeasurementService.from_app_config()
        app.extensions[MEASUREMENT_SERVICE_KEY] = measurement_service

        imagery_service = ImageryService.from_app_config()
        app.extensions[IMAGERY_SERVICE_KEY] = imagery_service

        editor_registry = EditorRegistry.from_app_config(measurement_service)
        app.extensions[EDITOR_REGISTRY_KEY] = editor_registry


def get_measurement_service() -> MeasurementService:
    """Return the shared measurement service instance."""
    service = current_app.extensions.get(MEASUREMENT_SERVICE_KEY)
    if service is None:
        service = MeasurementService.from_app_config()
        current_app.extensions[MEASUREMENT_SERVICE_KEY] = service
    return service


def get_imagery_service() -> ImageryService:
    """Return the shared imagery service instance."""
    service = current_app.extensions.get(IMAGERY_SERVICE_KEY)
    if service is None:
        service = ImageryService.from_app_config()
        current_app.extensions[IMAGERY_SERVICE_KEY] = service
    return service


def get_editor_registry() -> EditorRegistry:
    """Return the shared editor registry."""
    registry = current_app.extensions.get(EDITOR_REGISTRY_KEY)
    if registry is None:
        registry = EditorRegistry.from_app_config(get_measurement_service())
        current_app.extensions[EDITOR_REGISTRY_KEY] = registry
    return registry
