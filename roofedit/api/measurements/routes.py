from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from roofedit.app.container import get_imagery_service, get_measurement_service
from roofedit.domain.geometry import CanvasSize
from roofedit.services.imagery import ImageNotFoundError, ImageryError
from roofedit.services.measurement_service import MeasurementError, MeasurementNotFoundError

measurements_bp = Blueprint("measurements", __name__)


@measurements_bp.post("/api/measurements")
def import_measurement():
    """Import a measurement (stored shape or upstream pipeline shape) and save it."""
    data = request.get_json(silent=True)
    service = get_measurement_service()
    try:
        measurement, outcome = service.import_measurement(data)
        return jsonify({
            "success": True,
            "measurement": measurement.to_frontend_json(),
            "save": outcome.to_json(),
            "warnings": measurement.metadata.get("importWarnings", []),
        }), 201
    except MeasurementError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
    except Exception as exc:
        current_app.logger.error(f"Error importing measurement: {exc}", exc_info=True)
        return jsonify({"success": False, "message": "Internal server error"}), 500


@measurements_bp.get("/api/measurements")
def list_measurements():
    """List stored measurements with their summaries."""
    service = get_measurement_service()
    try:
        return jsonify({"success": True, "measurements": service.list_measurements()}), 200
    except MeasurementError as exc:
        return jsonify({"success": False, "message": str(exc)}), 500


@measurements_bp.get("/api/measurements/<measurement_id>")
def get_measurement(measurement_id: str):
    """Get a stored measurement with its geographic bounds."""
    service = get_measurement_service()
    try:
        measurement = service.load(measurement_id)
        bounds = service.geo_bounds(measurement)
        return jsonify({
            "success": True,
            "measurement": measurement.to_frontend_json(),
            "bounds": bounds.to_frontend_json() if bounds else None,
        }), 200
    except MeasurementNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    except MeasurementError as exc:
        return jsonify({"success": False, "message": str(exc)}), 500


@measurements_bp.put("/api/measurements/<measurement_id>")
def save_measurement(measurement_id: str):
    """Replace a stored measurement immediately."""
    data = request.get_json(silent=True)
    service = get_measurement_service()
    try:
        measurement, outcome = service.save_now(measurement_id, data)
        return jsonify({
            "success": True,
            "measurement": measurement.to_frontend_json(),
            "save": outcome.to_json(),
        }), 200
    except MeasurementError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400


@measurements_bp.get("/api/measurements/<measurement_id>/schematic")
def get_schematic(measurement_id: str):
    """Geo-referenced geometry fitted to a canvas of the requested size."""
    width = request.args.get("width", default=current_app.config["CANVAS_WIDTH"], type=int)
    height = request.args.get("height", default=current_app.config["CANVAS_HEIGHT"], type=int)
    service = get_measurement_service()
    try:
        canvas = CanvasSize(width, height)
        measurement = service.load(measurement_id)
        return jsonify({"success": True, "schematic": service.schematic(measurement, canvas)}), 200
    except ValueError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
    except MeasurementNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    except MeasurementError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400


@measurements_bp.post("/api/measurements/<measurement_id>/image")
def upload_image(measurement_id: str):
    """Upload the satellite image a measurement is drawn on; its size becomes the canvas."""
    file = request.files.get("image")
    if file is None:
        return jsonify({"success": False, "message": "image file is required"}), 400

    measurement_service = get_measurement_service()
    imagery_service = get_imagery_service()
    try:
        measurement_service.load(measurement_id)
        stored = imagery_service.save_image(measurement_id, file)
        measurement = measurement_service.attach_image(
            measurement_id, stored.image_width, stored.image_height
        )
        return jsonify({
            "success": True,
            "image": stored.to_json(),
            "measurement": measurement.to_frontend_json(),
        }), 201
    except MeasurementNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    except (ImageryError, MeasurementError) as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
    except Exception as exc:
        current_app.logger.error(f"Error uploading image for {measurement_id}: {exc}", exc_info=True)
        return jsonify({"success": False, "message": "Internal server error"}), 500


@measurements_bp.get("/api/imagery/<path:image_ref>")
def image_dimensions(image_ref: str):
    """Report the pixel size of a stored image."""
    try:
        width, height = get_imagery_service().dimensions(image_ref)
        return jsonify({"success": True, "width": width, "height": height}), 200
    except ImageNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    except ImageryError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
