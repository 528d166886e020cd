from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def init_extensions(app) -> None:
    """Initialize Flask extensions and create the measurement tables."""
    db.init_app(app)
    # Model registration must happen before create_all
    from roofedit.storage import sql  # noqa: F401

    with app.app_context():
        db.create_all()
