"""Scribe workspace: the transcript, generated notes and status of one visit."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Mapping, Optional

from medscribe.client.api import ApiClient
from medscribe.client.session import SessionManager
from medscribe.client.training import TrainingConfigStore
from medscribe.errors import MedScribeError
from medscribe.roles import Action

logger = logging.getLogger(__name__)

STATUS_READY = "Ready"
STATUS_BUSY = "Note generation already in progress"
STATUS_NO_PERMISSION = "You do not have permission to use the scribe feature"
STATUS_NO_TRANSCRIPT = "No transcript available"
STATUS_GENERATING = "Generating medical notes..."
STATUS_GENERATED = "Medical notes generated successfully"
STATUS_CANNOT_SAVE = "Cannot save - missing patient or notes"
STATUS_SAVED = "Visit saved successfully"


class ScribeWorkspace:
    """State behind the scribe screen.

    Failures never touch ``transcript``; they only update ``status`` so the
    user can retry.
    """

    def __init__(self, session: SessionManager, training: TrainingConfigStore, api: ApiClient) -> None:
        self.session = session
        self.training = training
        self.api = api
        self.transcript = ""
        self.notes = ""
        self.status = STATUS_READY
        self.selected_patient: Optional[Dict[str, Any]] = None
        self._busy = False
        self._busy_lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy

    def select_patient(self, patient: Optional[Mapping[str, Any]]) -> None:
        self.selected_patient = dict(patient) if patient else None

    def append_transcript(self, text: str) -> None:
        text = (text or "").strip()
        if not text:
            return
        self.transcript = f"{self.transcript} {text}".strip() if self.transcript else text

    def reset(self) -> None:
        self.transcript = ""
        self.notes = ""
        self.status = STATUS_READY

    def _acquire(self) -> bool:
        with self._busy_lock:
            if self._busy:
                return False
            self._busy = True
            return True

    def generate_notes(self) -> bool:
        """Generate notes for the current transcript; ``True`` on success.

        A call made while another generation is running is rejected.
        """

        if not self._acquire():
            self.status = STATUS_BUSY
            return False
        try:
            if not self.session.has_permission(Action.SCRIBE):
                self.status = STATUS_NO_PERMISSION
                return False
            if not self.transcript.strip():
                self.status = STATUS_NO_TRANSCRIPT
                return False
            self.status = STATUS_GENERATING
            patient_id = self.selected_patient.get("id") if self.selected_patient else None
            try:
                notes = self.api.generate_notes(self.transcript, self.training.to_request(), patient_id)
            except MedScribeError as exc:
                logger.warning("note generation failed: %s", exc.message)
                self.status = exc.message
                return False
            self.notes = notes
            self.status = STATUS_GENERATED
            return True
        finally:
            self._busy = False

    def save_visit(self) -> Optional[Dict[str, Any]]:
        if not self.selected_patient or not self.notes:
            self.status = STATUS_CANNOT_SAVE
            return None
        config = self.training.config
        try:
            visit = self.api.create_visit(
                {
                    "patientId": self.selected_patient.get("id"),
                    "transcript": self.transcript,
                    "notes": self.notes,
                    "specialty": config.specialty,
                    "noteType": config.note_type,
                }
            )
        except MedScribeError as exc:
            self.status = exc.message
            return None
        self.status = STATUS_SAVED
        return visit


__all__ = ["ScribeWorkspace"]
