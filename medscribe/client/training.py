"""Provider training configuration: specialty, note type and style examples.

The configuration always holds a valid (specialty, note type) pair from the
catalogue and at most five baseline notes, oldest first.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from medscribe import catalog
from medscribe.client.profile import TRAINING_SLOT, ProfileStore
from medscribe.client.session import SessionManager
from medscribe.errors import NotAuthenticated, ValidationError
from medscribe.sanitizer import strip_markdown
from medscribe.time_utils import utc_now

logger = logging.getLogger(__name__)

MAX_BASELINE_NOTES = 5


class BaselineNote(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    content: str = Field(min_length=1)
    specialty: str
    note_type: str = Field(alias="noteType")
    date_added: datetime = Field(alias="dateAdded")
    added_by: str = Field(alias="addedBy")


class TrainingConfiguration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    specialty: str = catalog.DEFAULT_SPECIALTY
    note_type: str = Field(default=catalog.DEFAULT_NOTE_TYPE, alias="noteType")
    baseline_notes: List[BaselineNote] = Field(default_factory=list, alias="baselineNotes")
    custom_templates: Dict[str, Any] = Field(default_factory=dict, alias="customTemplates")

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready camelCase representation used on disk and on the wire."""

        return self.model_dump(by_alias=True, mode="json")


def _parse_notes(raw: Any) -> List[BaselineNote]:
    notes: List[BaselineNote] = []
    if not isinstance(raw, list):
        return notes
    for item in raw:
        if isinstance(item, BaselineNote):
            notes.append(item)
            continue
        try:
            notes.append(BaselineNote.model_validate(item))
        except pydantic.ValidationError:
            logger.warning("dropping malformed baseline note entry")
    return notes[-MAX_BASELINE_NOTES:]


def normalise_configuration(raw: Any) -> TrainingConfiguration:
    """Coerce ``raw`` into a valid configuration.

    An unknown specialty falls back to the default specialty; an unknown note
    type falls back to the first note type of the resolved specialty.
    """

    if isinstance(raw, TrainingConfiguration):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        raw = {}
    specialty = raw.get("specialty")
    if not catalog.is_valid_specialty(specialty):
        if specialty is not None:
            logger.warning("unknown specialty %r; using %s", specialty, catalog.DEFAULT_SPECIALTY)
        specialty = catalog.DEFAULT_SPECIALTY
    note_type = raw.get("noteType", raw.get("note_type"))
    if not catalog.is_valid_pair(specialty, note_type):
        note_type = catalog.default_note_type(specialty)
    templates = raw.get("customTemplates", raw.get("custom_templates"))
    return TrainingConfiguration(
        specialty=specialty,
        note_type=note_type,
        baseline_notes=_parse_notes(raw.get("baselineNotes", raw.get("baseline_notes"))),
        custom_templates=dict(templates) if isinstance(templates, Mapping) else {},
    )


class TrainingConfigStore:
    def __init__(self, profile: ProfileStore, session_manager: SessionManager) -> None:
        self.profile = profile
        self.session_manager = session_manager
        self._config = self.load()

    @property
    def config(self) -> TrainingConfiguration:
        return self._config.model_copy(deep=True)

    def load(self) -> TrainingConfiguration:
        self._config = normalise_configuration(self.profile.read(TRAINING_SLOT, {}))
        return self._config

    def save(self, config: TrainingConfiguration | Mapping[str, Any]) -> TrainingConfiguration:
        validated = normalise_configuration(config)
        self.profile.write(TRAINING_SLOT, validated.to_payload())
        self._config = validated
        return validated

    def set_specialty(self, specialty: str) -> TrainingConfiguration:
        if not catalog.is_valid_specialty(specialty):
            raise ValidationError(f"Unknown specialty: {specialty!r}")
        note_type = self._config.note_type
        if not catalog.is_valid_pair(specialty, note_type):
            note_type = catalog.default_note_type(specialty)
        return self.save(self._config.model_copy(update={"specialty": specialty, "note_type": note_type}))

    def set_note_type(self, note_type: str) -> TrainingConfiguration:
        if not catalog.is_valid_pair(self._config.specialty, note_type):
            raise ValidationError(
                f"Unknown note type {note_type!r} for specialty {self._config.specialty!r}"
            )
        return self.save(self._config.model_copy(update={"note_type": note_type}))

    def add_baseline_note(self, text: Optional[str]) -> BaselineNote:
        """Store ``text`` as a style example, evicting the oldest beyond five."""

        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Baseline note text is required")
        session = self.session_manager.current_session()
        if session is None:
            raise NotAuthenticated("Sign in to add baseline notes")
        content = strip_markdown(text.strip())
        if not content:
            raise ValidationError("Baseline note text is required")
        note = BaselineNote(
            id=uuid.uuid4().hex,
            content=content,
            specialty=self._config.specialty,
            note_type=self._config.note_type,
            date_added=utc_now(),
            added_by=session.name,
        )
        notes = [*self._config.baseline_notes, note][-MAX_BASELINE_NOTES:]
        self.save(self._config.model_copy(update={"baseline_notes": notes}))
        return note

    def remove_baseline_note(self, note_id: str) -> None:
        notes = [n for n in self._config.baseline_notes if n.id != note_id]
        if len(notes) != len(self._config.baseline_notes):
            self.save(self._config.model_copy(update={"baseline_notes": notes}))

    def to_request(self) -> Dict[str, Any]:
        return self._config.to_payload()


__all__ = [
    "BaselineNote",
    "TrainingConfiguration",
    "TrainingConfigStore",
    "normalise_configuration",
    "MAX_BASELINE_NOTES",
]
