from __future__ import annotations

import os
from pathlib import Path

from flask import Flask

from roofedit.config import resolve_config
from roofedit.extensions import init_extensions
from roofedit.app.container import register_services


def create_app(config_name: str | None = None, instance_path: str | None = None) -> Flask:
    """Application factory."""
    project_root = Path(__file__).resolve().parents[2]
    app = Flask(
        __name__,
        instance_relative_config=True,
        instance_path=instance_path or str(project_root / "instance"),
    )

    config_class = resolve_config(config_name or os.getenv("FLASK_ENV"))
    app.config.from_object(config_class)
    _ensure_instance_subdirs(app)

    init_extensions(app)
    register_services(app)
    _register_blueprints(app)
    return app


def _register_blueprints(app: Flask) -> None:
    from roofedit.api.measurements.routes import measurements_bp
    from roofedit.api.editor.routes import editor_bp

    app.register_blueprint(measurements_bp)
    app.register_blueprint(editor_bp)


def _ensure_instance_subdirs(app: Flask) -> None:
    """Ensure the instance directory and its measurement/image folders exist."""
    instance_path = Path(app.instance_path)
    instance_path.mkdir(parents=True, exist_ok=True)
    for key in ("MEASUREMENT_DIR", "IMAGE_DIR"):
        directory = Path(app.config[key])
        if not directory.is_absolute():
            directory = instance_path / directory
        directory.mkdir(parents=True, exist_ok=True)
