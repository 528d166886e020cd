from __future__ import annotations

from typing import Dict, List, Optional

from flask import current_app

from roofedit.services.edit_engine import EditorSettings, EditSession
from roofedit.services.measurement_service import MeasurementService
from roofedit.services.persistence_gate import PersistenceGate, TimerFactory
from roofedit.storage.protocols import SaveOutcome


class EditorSessionError(Exception):
    """Base exception raised for editor session issues."""


class EditorSessionNotFoundError(EditorSessionError):
    """Raised when no editor is mounted for a measurement."""


class EditorRegistry:
    """
    Mounted editors, one per measurement.

    Mounting loads the measurement and creates a fresh edit session with its
    own history and persistence gate. Unmounting discards the session; any
    debounced save still pending is forfeited unless ``flush`` is requested.
    """

    def __init__(
        self,
        measurement_service: MeasurementService,
        settings: EditorSettings,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._measurement_service = measurement_service
        self._settings = settings
        self._timer_factory = timer_factory
        self._sessions: Dict[str, EditSession] = {}

    @classmethod
    def from_app_config(cls, measurement_service: MeasurementService) -> "EditorRegistry":
        """Create EditorRegistry from Flask app configuration."""
        return cls(
            measurement_service=measurement_service,
            settings=EditorSettings.from_config(current_app.config),
        )

    def mount(self, measurement_id: str) -> EditSession:
        """Open an editor for a stored measurement; an already mounted editor is returned as is."""
        session = self._sessions.get(measurement_id)
        if session is not None:
            return session

        measurement = self._measurement_service.load(measurement_id)
        gate = PersistenceGate.from_app_config(self._measurement_service.store, self._timer_factory)
        session = EditSession(measurement, gate=gate, settings=self._settings)
        self._sessions[measurement_id] = session
        current_app.logger.info(f"Mounted editor for measurement {measurement_id} ({gate.mode.value} validation)")
        return session

    def unmount(self, measurement_id: str, flush: bool = False) -> Optional[SaveOutcome]:
        session = self._sessions.pop(measurement_id, None)
        if session is None:
            raise EditorSessionNotFoundError(f"No editor mounted for measurement {measurement_id}.")
        outcome = session.gate.flush() if flush else None
        session.gate.cancel()
        current_app.logger.info(f"Unmounted editor for measurement {measurement_id}")
        return outcome

    def get(self, measurement_id: str) -> EditSession:
        session = self._sessions.get(measurement_id)
        if session is None:
            raise EditorSessionNotFoundError(f"No editor mounted for measurement {measurement_id}.")
        return session

    def mounted_ids(self) -> List[str]:
        return list(self._sessions)

    def unmount_all(self) -> None:
        for session in self._sessions.values():
            session.gate.cancel()
        self._sessions.clear()
