"""
Validate-then-debounce pipeline between the edit session and storage.

Every committed edit is submitted here. The snapshot is validated; if it
may be saved, the single debounce timer is (re)armed and the snapshot
becomes the pending one. When the timer fires only the latest pending
snapshot is written.
"""

from __future__ import annotations

import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass
from functools import partial
from enum import Enum
from typing import Any, Callable, ContextManager, Dict, Optional

from flask import current_app

from roofedit.domain.measurement import Measurement
from roofedit.services.validation import MeasurementValidator, ValidationReport
from roofedit.storage.protocols import MeasurementStore, MeasurementStoreError, SaveOutcome, save_snapshot

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 30.0

# app.extensions key for a replacement timer factory
TIMER_FACTORY_KEY = "timer_factory"

TimerFactory = Callable[[float, Callable[[], None]], Any]


class ValidationMode(str, Enum):
    ADVISORY = "advisory"
    STRICT = "strict"


class Debouncer:
    """
    One cancel-and-reschedule timer.

    ``timer_factory`` defaults to ``threading.Timer``; anything returning an
    object with ``start()`` and ``cancel()`` works. Every armed timer carries
    the generation it was armed in. A timer that was cancelled or replaced
    while it was already firing sees a newer generation and does nothing.
    """

    def __init__(self, delay: float, callback: Callable[[], None], timer_factory: TimerFactory = threading.Timer) -> None:
        self._delay = delay
        self._callback = callback
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            self._cancel_locked()
            timer = self._timer_factory(self._delay, partial(self._fire, self._generation))
            if isinstance(timer, threading.Timer):
                timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._callback()


@dataclass(frozen=True)
class SubmitResult:
    scheduled: bool
    report: ValidationReport

    def to_json(self) -> Dict[str, Any]:
        return {'scheduled': self.scheduled, 'validation': self.report.to_json()}


class PersistenceGate:
    """Validates submitted snapshots and saves the latest one after a quiet period."""

    def __init__(
        self,
        store: MeasurementStore,
        validator: Optional[MeasurementValidator] = None,
        *,
        mode: ValidationMode = ValidationMode.ADVISORY,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
        context_factory: Callable[[], ContextManager] = nullcontext,
    ) -> None:
        self._store = store
        self._validator = validator or MeasurementValidator()
        self._mode = ValidationMode(mode)
        self._context_factory = context_factory
        self._debouncer = Debouncer(delay, self._on_timer, timer_factory)
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._pending: Optional[Measurement] = None
        self.last_outcome: Optional[SaveOutcome] = None
        self.last_report: Optional[ValidationReport] = None

    @classmethod
    def from_app_config(cls, store: MeasurementStore, timer_factory: Optional[TimerFactory] = None) -> "PersistenceGate":
        """Build a gate from the current app's config; timer callbacks get an app context."""
        app = current_app._get_current_object()
        return cls(
            store,
            MeasurementValidator(),
            mode=ValidationMode(app.config.get("VALIDATION_MODE", "advisory")),
            delay=float(app.config.get("AUTOSAVE_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS)),
            timer_factory=timer_factory or app.extensions.get(TIMER_FACTORY_KEY) or threading.Timer,
            context_factory=app.app_context,
        )

    @property
    def mode(self) -> ValidationMode:
        return self._mode

    @property
    def pending(self) -> Optional[Measurement]:
        return self._pending

    @property
    def save_scheduled(self) -> bool:
        return self._debouncer.pending

    def submit(self, measurement: Measurement, override: bool = False) -> SubmitResult:
        """
        Validate a snapshot and schedule it for saving.

        In strict mode a snapshot with errors is not scheduled unless
        ``override`` is set; a previously scheduled snapshot stays pending.
        """
        report = self._validator.validate(measurement)
        self.last_report = report
        for warning in report.warnings:
            logger.info("Measurement %s: %s", measurement.id, warning)
        if not report.is_valid:
            for error in report.errors:
                logger.warning("Measurement %s failed validation: %s", measurement.id, error)
            if self._mode is ValidationMode.STRICT and not override:
                return SubmitResult(scheduled=False, report=report)

        with self._lock:
            self._pending = measurement
            self._debouncer.trigger()
        return SubmitResult(scheduled=True, report=report)

    def flush(self) -> Optional[SaveOutcome]:
        """Save the pending snapshot now, if there is one."""
        self._debouncer.cancel()
        return self._save_pending()

    def cancel(self) -> None:
        """Forfeit the pending save."""
        with self._lock:
            self._debouncer.cancel()
            if self._pending is not None:
                logger.info("Discarding unsaved changes to measurement %s", self._pending.id)
            self._pending = None

    def _on_timer(self) -> None:
        self._save_pending()

    def _save_pending(self) -> Optional[SaveOutcome]:
        # The timer thread and flush() never save concurrently
        with self._save_lock:
            with self._lock:
                snapshot = self._pending
            if snapshot is None:
                return None
            try:
                with self._context_factory():
                    outcome = save_snapshot(self._store, snapshot)
            except MeasurementStoreError as exc:
                logger.error("Saving measurement %s failed, retrying later: %s", snapshot.id, exc, exc_info=True)
                outcome = SaveOutcome(
                    ok=False,
                    measurement_id=snapshot.id,
                    message=str(exc),
                )
                with self._lock:
                    # Nothing to retry once the editor has cancelled
                    if self._pending is not None:
                        self._debouncer.trigger()
            else:
                logger.info("Saved measurement %s (version %s)", snapshot.id, outcome.version)
                with self._lock:
                    if self._pending is snapshot:
                        self._pending = None
            self.last_outcome = outcome
            return outcome
