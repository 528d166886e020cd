from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Type


class Config:
    """Base application configuration."""

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            "sqlite:///roofedit.db",
        ),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    # "sql" persists through SQLAlchemy, "local" writes versioned JSON files.
    # Relative directories resolve against the instance folder.
    MEASUREMENT_STORE: str = os.getenv("MEASUREMENT_STORE", "sql")
    MEASUREMENT_DIR: Path = Path(os.getenv("MEASUREMENT_DIR", "measurements"))
    IMAGE_DIR: Path = Path(os.getenv("IMAGE_DIR", "imagery"))

    # Editor canvas and interaction tolerances (pixels)
    CANVAS_WIDTH: int = int(os.getenv("CANVAS_WIDTH", "640"))
    CANVAS_HEIGHT: int = int(os.getenv("CANVAS_HEIGHT", "480"))
    SNAP_TOLERANCE_PX: float = float(os.getenv("SNAP_TOLERANCE_PX", "20"))
    CLOSE_TOLERANCE_PX: float = float(os.getenv("CLOSE_TOLERANCE_PX", "15"))
    HIT_TOLERANCE_PX: float = float(os.getenv("HIT_TOLERANCE_PX", "10"))
    MERGE_EPSILON: float = float(os.getenv("MERGE_EPSILON", "0.001"))

    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "50"))
    AUTOSAVE_DEBOUNCE_SECONDS: float = float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "30"))
    VALIDATION_MODE: str = os.getenv("VALIDATION_MODE", "advisory")
    PROXIMITY_THRESHOLD_M: float = float(os.getenv("PROXIMITY_THRESHOLD_M", "50"))


class DevelopmentConfig(Config):
    DEBUG: bool = True


class ProductionConfig(Config):
    DEBUG: bool = False
    VALIDATION_MODE: str = os.getenv("VALIDATION_MODE", "strict")


class TestingConfig(Config):
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///:memory:"
    AUTOSAVE_DEBOUNCE_SECONDS: float = 30.0


CONFIG_MAP: Dict[str, Type[Config]] = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": Config,
}


def resolve_config(config_name: str | None) -> Type[Config]:
    """Return the configuration class for the given name."""
    if not config_name:
        return CONFIG_MAP["default"]
    return CONFIG_MAP.get(config_name, CONFIG_MAP["default"])
