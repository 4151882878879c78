"""
Prompt construction for clinical note generation.

``build_note_prompt`` turns a transcript, an optional patient context and the
provider's training configuration into the two chat messages sent to the
completion service.  The output depends only on its inputs so identical
requests always produce identical prompts.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from medscribe import catalog
from medscribe.errors import ValidationError

MAX_STYLE_EXAMPLES = 3
VISIT_SUMMARY_CHARS = 200
RECENT_VISIT_COUNT = 3

NOTE_SECTIONS = (
    "CHIEF COMPLAINT",
    "HISTORY OF PRESENT ILLNESS",
    "REVIEW OF SYSTEMS",
    "PHYSICAL EXAMINATION",
    "ASSESSMENT AND PLAN",
)

NO_HISTORY = "No significant medical history"
NO_MEDICATIONS = "No current medications"
NO_PATIENT_NOTICE = "No patient selected - generate a general note without patient-specific context."
TRANSCRIPT_HEADER = "CURRENT VISIT TRANSCRIPT:"
STYLE_EXAMPLES_HEADER = "PROVIDER STYLE EXAMPLES"

FORMATTING_RULES = (
    "FORMATTING REQUIREMENTS:\n"
    "- Write plain text only. Do not use markdown of any kind (no #, *, _, ` or ~ characters for formatting).\n"
    "- Write section headers in ALL CAPS followed by a colon, for example \"CHIEF COMPLAINT:\".\n"
    "- Use a hyphen followed by a space for bullet points.\n"
    "- Do not force numbered lists; use them only where the content is naturally sequential."
)


def _field(config: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in config and config[name] is not None:
            return config[name]
    return None


def _training_value(training: Any, *names: str) -> Any:
    if isinstance(training, Mapping):
        return _field(training, *names)
    for name in names:
        value = getattr(training, name, None)
        if value is not None:
            return value
    return None


def _note_value(note: Any, *names: str) -> Any:
    if isinstance(note, Mapping):
        return _field(note, *names)
    for name in names:
        value = getattr(note, name, None)
        if value is not None:
            return value
    return None


def select_style_examples(
    baseline_notes: Optional[Sequence[Any]], specialty: str, note_type: str
) -> List[str]:
    """Return the content of up to three most recent matching baseline notes.

    Notes are stored oldest first; the newest matching note is example 1.
    Notes authored under a different specialty or note type are ignored.
    """

    selected: List[str] = []
    for note in reversed(list(baseline_notes or [])):
        if (
            _note_value(note, "specialty") == specialty
            and _note_value(note, "note_type", "noteType") == note_type
        ):
            content = _note_value(note, "content")
            if isinstance(content, str) and content.strip():
                selected.append(content)
        if len(selected) >= MAX_STYLE_EXAMPLES:
            break
    return selected


def build_system_prompt(specialty: str, note_type: str, examples: Sequence[str]) -> str:
    specialty_label = catalog.specialty_name(specialty)
    note_label = catalog.note_type_name(specialty, note_type)
    parts = [
        f"You are an expert medical scribe for {specialty_label}. "
        f"Convert the visit transcript into a professional {note_label}.",
        FORMATTING_RULES,
        f"SPECIALTY GUIDANCE:\n{catalog.specialty_instruction(specialty)}",
        "REQUIRED SECTIONS:\n" + "\n".join(f"{section}:" for section in NOTE_SECTIONS),
    ]
    if examples:
        lines = [
            f"{STYLE_EXAMPLES_HEADER}:",
            "Match the structure, tone and level of detail of these notes written by this provider.",
        ]
        for index, example in enumerate(examples, start=1):
            lines.append(f"Example {index}:\n{example}")
        parts.append("\n\n".join(lines))
    return "\n\n".join(parts)


def _visit_summary(visit: Mapping[str, Any]) -> str:
    text = str(visit.get("notes") or visit.get("transcript") or "")
    if len(text) > VISIT_SUMMARY_CHARS:
        text = text[:VISIT_SUMMARY_CHARS] + "..."
    date = visit.get("date") or ""
    return f"- {date}: {text}" if date else f"- {text}"


def build_patient_context(patient: Optional[Mapping[str, Any]]) -> str:
    if not patient:
        return NO_PATIENT_NOTICE
    name = f"{patient.get('firstName') or ''} {patient.get('lastName') or ''}".strip()
    history = str(patient.get("medicalHistory") or "").strip() or NO_HISTORY
    medications = str(patient.get("medications") or "").strip() or NO_MEDICATIONS
    lines = [
        "PATIENT CONTEXT:",
        f"Name: {name or 'Unknown'}",
        f"Date of Birth: {patient.get('dateOfBirth') or 'Unknown'}",
        f"Medical History: {history}",
        f"Current Medications: {medications}",
    ]
    visits = list(patient.get("visits") or [])[:RECENT_VISIT_COUNT]
    if visits:
        lines.append("Recent Visits:")
        lines.extend(_visit_summary(v) for v in visits if isinstance(v, Mapping))
    return "\n".join(lines)


def build_note_prompt(
    transcript: str,
    patient: Optional[Mapping[str, Any]],
    training: Any,
) -> List[Dict[str, str]]:
    """Return the system and user messages for a note generation request.

    ``training`` is a mapping (camelCase or snake_case keys) or an object with
    ``specialty``, ``note_type`` and ``baseline_notes`` attributes.
    ``patient`` may carry a ``visits`` list ordered newest first.  Unknown
    specialty or note type keys raise :class:`ValidationError`.
    """

    specialty = _training_value(training, "specialty")
    note_type = _training_value(training, "note_type", "noteType")
    if not catalog.is_valid_specialty(specialty):
        raise ValidationError(f"Unknown specialty: {specialty!r}")
    if not catalog.is_valid_pair(specialty, note_type):
        raise ValidationError(f"Unknown note type {note_type!r} for specialty {specialty!r}")

    examples = select_style_examples(
        _training_value(training, "baseline_notes", "baselineNotes"), specialty, note_type
    )
    note_label = catalog.note_type_name(specialty, note_type)

    user_content = "\n\n".join(
        [
            build_patient_context(patient),
            f"{TRANSCRIPT_HEADER}\n{transcript}",
            f"Please convert this transcript into a structured {note_label} following the required sections.",
        ]
    )
    return [
        {"role": "system", "content": build_system_prompt(specialty, note_type, examples)},
        {"role": "user", "content": user_content},
    ]


__all__ = [
    "build_note_prompt",
    "build_system_prompt",
    "build_patient_context",
    "select_style_examples",
    "NOTE_SECTIONS",
]
