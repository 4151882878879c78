"""Static catalogue of medical specialties and the note types under each."""

from __future__ import annotations

from typing import Dict, Optional

MEDICAL_SPECIALTIES: Dict[str, Dict[str, object]] = {
    "internal_medicine": {
        "name": "Internal Medicine",
        "noteTypes": {
            "progress_note": "Progress Note",
            "history_physical": "History & Physical",
            "consultation": "Consultation",
            "discharge_summary": "Discharge Summary",
            "procedure_note": "Procedure Note",
        },
    },
    "obesity_medicine": {
        "name": "Obesity Medicine",
        "noteTypes": {
            "initial_consultation": "Initial Weight Management Consultation",
            "follow_up": "Weight Management Follow-up",
            "medication_management": "Obesity Medication Management",
            "bariatric_eval": "Pre-Bariatric Surgery Evaluation",
            "lifestyle_counseling": "Lifestyle Modification Counseling",
        },
    },
    "registered_dietitian": {
        "name": "Registered Dietitian",
        "noteTypes": {
            "nutrition_assessment": "Nutrition Assessment",
            "meal_planning": "Meal Planning Session",
            "follow_up": "Nutrition Follow-up",
            "diabetes_education": "Diabetes Nutrition Education",
            "weight_management": "Weight Management Counseling",
        },
    },
    "cardiology": {
        "name": "Cardiology",
        "noteTypes": {
            "echo_interpretation": "Echo Interpretation",
            "cardiac_cath": "Cardiac Catheterization",
            "stress_test": "Stress Test",
            "ep_study": "EP Study",
            "consultation": "Cardiology Consultation",
        },
    },
    "emergency_medicine": {
        "name": "Emergency Medicine",
        "noteTypes": {
            "ed_note": "Emergency Department Note",
            "trauma_note": "Trauma Note",
            "procedure_note": "Procedure Note",
            "discharge_note": "ED Discharge Note",
        },
    },
    "surgery": {
        "name": "Surgery",
        "noteTypes": {
            "operative_note": "Operative Note",
            "preop_note": "Pre-operative Note",
            "postop_note": "Post-operative Note",
            "consultation": "Surgical Consultation",
        },
    },
    "psychiatry": {
        "name": "Psychiatry",
        "noteTypes": {
            "psych_eval": "Psychiatric Evaluation",
            "therapy_note": "Therapy Note",
            "medication_management": "Medication Management",
            "crisis_intervention": "Crisis Intervention",
        },
    },
    "pediatrics": {
        "name": "Pediatrics",
        "noteTypes": {
            "well_child": "Well Child Visit",
            "sick_visit": "Sick Visit",
            "developmental": "Developmental Assessment",
            "vaccination": "Vaccination Visit",
        },
    },
}

SPECIALTY_INSTRUCTIONS: Dict[str, str] = {
    "internal_medicine": (
        "Focus on comprehensive assessment, chronic disease management, and preventive care. "
        "Include vital signs, medication reconciliation, and follow-up planning."
    ),
    "obesity_medicine": (
        "Document BMI, weight trends, comorbidities, current medications, dietary habits, "
        "physical activity levels, behavioral modifications, and treatment plan including "
        "pharmacotherapy if applicable."
    ),
    "registered_dietitian": (
        "Include anthropometric measurements, dietary intake analysis, nutrient needs assessment, "
        "food preferences, barriers to change, education provided, and specific meal planning "
        "recommendations."
    ),
    "cardiology": (
        "Emphasize cardiovascular examination, risk stratification, cardiac-specific assessments, "
        "and diagnostic test interpretation."
    ),
    "emergency_medicine": (
        "Prioritize acute presentation, triage assessment, disposition planning, and "
        "time-sensitive clinical decisions."
    ),
    "surgery": (
        "Detail procedural findings, surgical technique, complications, post-operative orders, "
        "and discharge planning."
    ),
    "psychiatry": (
        "Include mental status examination, suicide/violence risk assessment, medication "
        "management, and therapeutic planning."
    ),
    "pediatrics": (
        "Consider age-appropriate development, growth parameters, immunization status, family "
        "dynamics, and pediatric-specific concerns."
    ),
}

GENERIC_SPECIALTY_INSTRUCTION = (
    "Document the encounter thoroughly and accurately, following standard clinical "
    "documentation practice for this specialty."
)

DEFAULT_SPECIALTY = "internal_medicine"
DEFAULT_NOTE_TYPE = "progress_note"


def note_types(specialty: str) -> Dict[str, str]:
    entry = MEDICAL_SPECIALTIES.get(specialty)
    if not entry:
        return {}
    return dict(entry["noteTypes"])  # type: ignore[arg-type]


def is_valid_specialty(specialty: Optional[str]) -> bool:
    return isinstance(specialty, str) and specialty in MEDICAL_SPECIALTIES


def is_valid_pair(specialty: Optional[str], note_type: Optional[str]) -> bool:
    return is_valid_specialty(specialty) and note_type in note_types(specialty)  # type: ignore[arg-type]


def default_note_type(specialty: str) -> str:
    """Return the first note type listed for ``specialty``."""

    types = note_types(specialty)
    if not types:
        raise KeyError(specialty)
    return next(iter(types))


def specialty_name(specialty: str) -> str:
    """Display name for ``specialty``; raises ``KeyError`` when unknown."""

    return str(MEDICAL_SPECIALTIES[specialty]["name"])


def note_type_name(specialty: str, note_type: str) -> str:
    """Display name for ``note_type`` under ``specialty``; raises ``KeyError``."""

    types = note_types(specialty)
    if specialty not in MEDICAL_SPECIALTIES:
        raise KeyError(specialty)
    return types[note_type]


def specialty_instruction(specialty: str) -> str:
    return SPECIALTY_INSTRUCTIONS.get(specialty, GENERIC_SPECIALTY_INSTRUCTION)
