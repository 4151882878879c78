"""Prompt assembly for note generation."""

import pytest

from medscribe.errors import ValidationError
from medscribe.prompts import (
    NO_HISTORY,
    NO_MEDICATIONS,
    NO_PATIENT_NOTICE,
    NOTE_SECTIONS,
    STYLE_EXAMPLES_HEADER,
    TRANSCRIPT_HEADER,
    build_note_prompt,
    build_patient_context,
    select_style_examples,
)


def note(content, specialty="internal_medicine", note_type="progress_note"):
    return {"id": content, "content": content, "specialty": specialty, "noteType": note_type}


def test_prompt_without_examples_or_patient():
    system, user = build_note_prompt(
        "Patient reports mild cough.",
        None,
        {"specialty": "internal_medicine", "noteType": "progress_note"},
    )
    assert system["role"] == "system"
    assert user["role"] == "user"
    for section in NOTE_SECTIONS:
        assert f"{section}:" in system["content"]
    assert STYLE_EXAMPLES_HEADER not in system["content"]
    assert "Example 1" not in system["content"]
    assert NO_PATIENT_NOTICE in user["content"]
    assert f"{TRANSCRIPT_HEADER}\nPatient reports mild cough." in user["content"]
    assert "Progress Note" in user["content"]


def test_prompt_is_deterministic():
    training = {"specialty": "cardiology", "noteType": "consultation", "baselineNotes": [note("a", "cardiology", "consultation")]}
    assert build_note_prompt("t", None, training) == build_note_prompt("t", None, training)


def test_style_examples_are_capped_and_newest_first():
    notes = [note(f"note {i}") for i in range(1, 6)]
    assert select_style_examples(notes, "internal_medicine", "progress_note") == ["note 5", "note 4", "note 3"]

    system, _ = build_note_prompt(
        "t", None, {"specialty": "internal_medicine", "noteType": "progress_note", "baselineNotes": notes}
    )
    content = system["content"]
    assert f"{STYLE_EXAMPLES_HEADER}:" in content
    assert "Example 1:\nnote 5" in content
    assert "Example 3:\nnote 3" in content
    assert "Example 4" not in content
    assert "note 2" not in content


def test_style_examples_require_exact_pair_match():
    notes = [
        note("other specialty", "cardiology", "progress_note"),
        note("other type", "internal_medicine", "consultation"),
        note("match"),
    ]
    assert select_style_examples(notes, "internal_medicine", "progress_note") == ["match"]
    system, _ = build_note_prompt(
        "t", None, {"specialty": "internal_medicine", "noteType": "progress_note", "baselineNotes": notes}
    )
    assert "other specialty" not in system["content"]
    assert "other type" not in system["content"]


def test_style_examples_accept_objects():
    class Note:
        def __init__(self, content):
            self.content = content
            self.specialty = "surgery"
            self.note_type = "operative_note"

    assert select_style_examples([Note("op")], "surgery", "operative_note") == ["op"]


def test_patient_context_defaults():
    context = build_patient_context({"firstName": "Ada", "lastName": "Lovelace", "dateOfBirth": "1980-12-10"})
    assert context.startswith("PATIENT CONTEXT:")
    assert "Name: Ada Lovelace" in context
    assert "Date of Birth: 1980-12-10" in context
    assert f"Medical History: {NO_HISTORY}" in context
    assert f"Current Medications: {NO_MEDICATIONS}" in context
    assert "Recent Visits" not in context


def test_patient_context_summarises_three_recent_visits():
    visits = [{"date": f"2024-01-0{i}", "notes": f"visit {i} " + "x" * 300} for i in range(1, 5)]
    context = build_patient_context({"firstName": "Ada", "lastName": "L", "visits": visits})
    assert "Recent Visits:" in context
    assert "visit 3" in context
    assert "visit 4" not in context
    line = next(row for row in context.splitlines() if "visit 1" in row)
    assert line.endswith("...")
    assert len(line) == len("- 2024-01-01: ") + 200 + 3


def test_unknown_specialty_or_note_type_is_rejected():
    with pytest.raises(ValidationError):
        build_note_prompt("t", None, {"specialty": "dentistry", "noteType": "progress_note"})
    with pytest.raises(ValidationError):
        build_note_prompt("t", None, {"specialty": "internal_medicine", "noteType": "op_note"})
