from __future__ import annotations

from typing import Callable

from flask import Blueprint, current_app, jsonify, request

from roofedit.app.container import get_editor_registry
from roofedit.domain.measurement import FeatureType
from roofedit.services.edit_engine import EditMode, EditResult, EditSession
from roofedit.services.editor_registry import EditorSessionError, EditorSessionNotFoundError
from roofedit.services.measurement_service import MeasurementError, MeasurementNotFoundError

editor_bp = Blueprint("editor", __name__)


def _edit_response(session: EditSession, result: EditResult):
    """User errors answer 422 with the unchanged state."""
    body = {
        "success": result.ok,
        "message": result.message,
        "changed": result.changed,
        "state": session.to_state_json(),
    }
    if result.changed and session.last_submit is not None:
        body["validation"] = session.last_submit.to_json()
    return jsonify(body), 200 if result.ok else 422


def _edit(measurement_id: str, operation: Callable[[EditSession], EditResult]):
    try:
        session = get_editor_registry().get(measurement_id)
    except EditorSessionNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    try:
        result = operation(session)
    except (KeyError, TypeError, ValueError) as exc:
        return jsonify({"success": False, "message": f"Invalid request: {exc}"}), 400
    except Exception as exc:
        current_app.logger.error(f"Error editing measurement {measurement_id}: {exc}", exc_info=True)
        return jsonify({"success": False, "message": "Internal server error"}), 500
    return _edit_response(session, result)


def _json() -> dict:
    return request.get_json(silent=True) or {}


@editor_bp.post("/api/editor/<measurement_id>")
def mount_editor(measurement_id: str):
    """Open an editor for a stored measurement."""
    try:
        session = get_editor_registry().mount(measurement_id)
        return jsonify({"success": True, "state": session.to_state_json()}), 201
    except MeasurementNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    except (MeasurementError, EditorSessionError) as exc:
        return jsonify({"success": False, "message": str(exc)}), 500


@editor_bp.delete("/api/editor/<measurement_id>")
def unmount_editor(measurement_id: str):
    """Close an editor; pending changes are saved only with ``?flush=1``."""
    flush = request.args.get("flush", "0").lower() in ("1", "true", "yes")
    try:
        outcome = get_editor_registry().unmount(measurement_id, flush=flush)
        return jsonify({"success": True, "save": outcome.to_json() if outcome else None}), 200
    except EditorSessionNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404


@editor_bp.get("/api/editor/<measurement_id>")
def get_editor_state(measurement_id: str):
    try:
        session = get_editor_registry().get(measurement_id)
    except EditorSessionNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404
    gate = session.gate
    return jsonify({
        "success": True,
        "state": session.to_state_json(),
        "saveScheduled": gate.save_scheduled,
        "lastSave": gate.last_outcome.to_json() if gate.last_outcome else None,
    }), 200


@editor_bp.post("/api/editor/<measurement_id>/mode")
def set_mode(measurement_id: str):
    return _edit(measurement_id, lambda s: s.set_mode(EditMode(_json()["mode"])))


@editor_bp.post("/api/editor/<measurement_id>/click")
def click(measurement_id: str):
    """Pointer click in canvas pixels."""
    def operation(session: EditSession) -> EditResult:
        data = _json()
        return session.click(float(data["x"]), float(data["y"]))

    return _edit(measurement_id, operation)


@editor_bp.post("/api/editor/<measurement_id>/key")
def key(measurement_id: str):
    def operation(session: EditSession) -> EditResult:
        data = _json()
        return session.handle_key(str(data["key"]), bool(data.get("ctrl")), bool(data.get("shift")))

    return _edit(measurement_id, operation)


@editor_bp.post("/api/editor/<measurement_id>/drag")
def drag(measurement_id: str):
    """Vertex drag completion."""
    def operation(session: EditSession) -> EditResult:
        data = _json()
        return session.move_vertex(
            int(data["facetIndex"]), int(data["vertexIndex"]), float(data["x"]), float(data["y"])
        )

    return _edit(measurement_id, operation)


@editor_bp.post("/api/editor/<measurement_id>/undo")
def undo(measurement_id: str):
    return _edit(measurement_id, lambda s: s.undo())


@editor_bp.post("/api/editor/<measurement_id>/redo")
def redo(measurement_id: str):
    return _edit(measurement_id, lambda s: s.redo())


@editor_bp.post("/api/editor/<measurement_id>/merge")
def merge(measurement_id: str):
    return _edit(measurement_id, lambda s: s.commit_merge())


@editor_bp.post("/api/editor/<measurement_id>/annotation")
def confirm_annotation(measurement_id: str):
    """Supply the text of a pending note or damage annotation."""
    return _edit(measurement_id, lambda s: s.confirm_annotation(_json().get("text")))


@editor_bp.delete("/api/editor/<measurement_id>/annotation")
def cancel_annotation(measurement_id: str):
    return _edit(measurement_id, lambda s: s.cancel_annotation())


@editor_bp.post("/api/editor/<measurement_id>/reclassify")
def reclassify(measurement_id: str):
    def operation(session: EditSession) -> EditResult:
        data = _json()
        return session.reclassify_feature(str(data["featureId"]), FeatureType(data["type"]))

    return _edit(measurement_id, operation)


@editor_bp.post("/api/editor/<measurement_id>/simplify")
def simplify(measurement_id: str):
    def operation(session: EditSession) -> EditResult:
        data = _json()
        return session.simplify_facet(str(data["facetId"]), float(data.get("tolerance", 0.005)))

    return _edit(measurement_id, operation)


@editor_bp.post("/api/editor/<measurement_id>/reset")
def reset(measurement_id: str):
    return _edit(measurement_id, lambda s: s.reset())


@editor_bp.post("/api/editor/<measurement_id>/flush")
def flush(measurement_id: str):
    """
    Save now instead of waiting for the debounce timer.

    With ``{"override": true}`` the current snapshot is saved even when
    strict validation would block it.
    """
    try:
        session = get_editor_registry().get(measurement_id)
    except EditorSessionNotFoundError as exc:
        return jsonify({"success": False, "message": str(exc)}), 404

    gate = session.gate
    validation = None
    if _json().get("override"):
        validation = gate.submit(session.measurement, override=True).report.to_json()
    outcome = gate.flush()
    if outcome is None:
        report = gate.last_report
        return jsonify({
            "success": report is None or report.is_valid,
            "message": "Nothing to save",
            "validation": report.to_json() if report else validation,
        }), 200
    return jsonify({
        "success": outcome.ok,
        "save": outcome.to_json(),
        "validation": validation,
    }), 200 if outcome.ok else 500
