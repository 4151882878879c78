"""Note generation: precondition checks, prompt assembly and clean-up."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import structlog
from prometheus_client import Counter

from medscribe.errors import ConfigurationError, NoteGenerationError, PermissionDenied, ValidationError
from medscribe.openai_client import AzureChatClient
from medscribe.prompts import build_note_prompt
from medscribe.roles import Action, Role, has_permission
from medscribe.sanitizer import strip_markdown

logger = structlog.get_logger(__name__)

NOTE_GENERATIONS = Counter(
    "medscribe_note_generations_total",
    "Note generation attempts by outcome",
    ("outcome",),
)


class NoteGenerator:
    """Turns transcripts into clinical notes through a completion client."""

    def __init__(self, client: AzureChatClient) -> None:
        self.client = client

    def generate(
        self,
        transcript: Any,
        patient: Optional[Mapping[str, Any]],
        training: Any,
        *,
        role: Role | str | None,
    ) -> str:
        if not has_permission(role, Action.SCRIBE):
            NOTE_GENERATIONS.labels(outcome="forbidden").inc()
            raise PermissionDenied("You do not have permission to generate notes")
        if not isinstance(transcript, str) or not transcript.strip():
            NOTE_GENERATIONS.labels(outcome="invalid").inc()
            raise ValidationError("No transcript available")
        if not self.client.configured:
            NOTE_GENERATIONS.labels(outcome="unconfigured").inc()
            raise ConfigurationError("OpenAI configuration missing")

        messages = build_note_prompt(transcript, patient, training)
        try:
            raw = self.client.complete(messages)
        except NoteGenerationError as exc:
            NOTE_GENERATIONS.labels(outcome=exc.kind or "error").inc()
            raise
        NOTE_GENERATIONS.labels(outcome="success").inc()
        logger.info("note_generated", characters=len(raw))
        return strip_markdown(raw)


def generate_note(
    transcript: Any,
    patient: Optional[Mapping[str, Any]],
    training: Any,
    *,
    role: Role | str | None,
    client: AzureChatClient,
) -> str:
    """Functional wrapper around :meth:`NoteGenerator.generate`."""

    return NoteGenerator(client).generate(transcript, patient, training, role=role)


__all__ = ["NoteGenerator", "generate_note", "NOTE_GENERATIONS"]
