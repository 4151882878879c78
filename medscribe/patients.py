"""Patient records and search helpers.

Patients live in the ``patients`` table under a single ``"patient"``
partition keyed by patient id.  Free-text fields are HTML-sanitised on write.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from medscribe.errors import EntityExists, ValidationError
from medscribe.sanitizer import sanitize_text
from medscribe.table_store import PARTITION_KEY, ROW_KEY, TableStore
from medscribe.time_utils import calculate_age, isoformat_z, utc_now

if TYPE_CHECKING:  # pragma: no cover
    from medscribe.visits import VisitRepository

logger = logging.getLogger(__name__)

PATIENTS_TABLE = "patients"
PATIENT_PARTITION = "patient"

REQUIRED_FIELDS = {
    "firstName": "First name is required",
    "lastName": "Last name is required",
    "dateOfBirth": "Date of birth is required",
}
TEXT_FIELDS = (
    "firstName",
    "lastName",
    "dateOfBirth",
    "gender",
    "phone",
    "email",
    "address",
    "emergencyContact",
    "emergencyPhone",
    "insurance",
    "allergies",
    "medicalHistory",
    "medications",
)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGIT_RE = re.compile(r"\D")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def is_valid_phone(phone: str) -> bool:
    """Ten digits, or eleven with a country code, ignoring punctuation."""

    return len(_NON_DIGIT_RE.sub("", phone)) in (10, 11)


def validate_patient_data(data: Mapping[str, Any], *, partial: bool = False) -> List[str]:
    """Return a list of human readable problems with ``data``.

    ``partial`` skips the required-field checks for fields not present, as
    used by merge updates.
    """

    errors: List[str] = []
    for field, message in REQUIRED_FIELDS.items():
        if partial and field not in data:
            continue
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            errors.append(message)
    email = data.get("email")
    if email and not is_valid_email(str(email)):
        errors.append("Invalid email address")
    phone = data.get("phone")
    if phone and not is_valid_phone(str(phone)):
        errors.append("Invalid phone number format")
    return errors


def _clean(data: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for field in TEXT_FIELDS:
        if field in data and data[field] is not None:
            cleaned[field] = sanitize_text(str(data[field])).strip()
    return cleaned


def full_name(patient: Mapping[str, Any]) -> str:
    return f"{patient.get('firstName') or ''} {patient.get('lastName') or ''}".strip()


def filter_patients(patients: Iterable[Mapping[str, Any]], term: Optional[str]) -> List[Mapping[str, Any]]:
    """Case-insensitive match on name, date of birth, phone, email or id."""

    items = [p for p in patients if p]
    if not term or not term.strip():
        return items
    needle = term.strip().lower()
    matched = []
    for patient in items:
        haystacks = (
            full_name(patient).lower(),
            str(patient.get("dateOfBirth") or ""),
            str(patient.get("phone") or ""),
            str(patient.get("email") or "").lower(),
            str(patient.get("id") or "").lower(),
        )
        if any(needle in hay for hay in haystacks):
            matched.append(patient)
    return matched


def sort_by_name(patients: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return sorted(
        patients,
        key=lambda p: f"{p.get('lastName') or ''} {p.get('firstName') or ''}".lower(),
    )


def patient_age(patient: Mapping[str, Any]) -> Optional[int]:
    return calculate_age(patient.get("dateOfBirth"))


class PatientRepository:
    def __init__(self, store: TableStore, visits: Optional["VisitRepository"] = None) -> None:
        self.store = store
        self.visits = visits

    def list_patients(self, limit: Optional[int] = 100) -> List[Dict[str, Any]]:
        return self.store.list(PATIENT_PARTITION, limit=limit)

    def get_patient(self, patient_id: str) -> Dict[str, Any]:
        return self.store.get(PATIENT_PARTITION, str(patient_id))

    def create_patient(self, data: Mapping[str, Any], *, created_by: Optional[str] = None) -> Dict[str, Any]:
        errors = validate_patient_data(data)
        if errors:
            raise ValidationError("; ".join(errors), details=errors)
        patient_id = str(data.get("id") or uuid.uuid4().hex)
        now = isoformat_z(utc_now())
        entity: Dict[str, Any] = {
            PARTITION_KEY: PATIENT_PARTITION,
            ROW_KEY: patient_id,
            "id": patient_id,
            **_clean(data),
            "createdAt": now,
            "updatedAt": now,
            "createdBy": created_by,
        }
        try:
            created = self.store.create(entity)
        except EntityExists:
            raise EntityExists(f"Patient {patient_id!r} already exists") from None
        logger.info("patient created id=%s by=%s", patient_id, created_by)
        return created

    def update_patient(self, patient_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` into an existing patient.  Unknown ids raise ``EntityNotFound``."""

        current = self.get_patient(patient_id)
        errors = validate_patient_data(changes, partial=True)
        if errors:
            raise ValidationError("; ".join(errors), details=errors)
        update: Dict[str, Any] = {
            PARTITION_KEY: PATIENT_PARTITION,
            ROW_KEY: current[ROW_KEY],
            **_clean(changes),
            "updatedAt": isoformat_z(utc_now()),
        }
        return self.store.upsert(update, merge=True)

    def delete_patient(self, patient_id: str) -> int:
        """Delete the patient and its visits; return the number of visits removed."""

        self.store.delete(PATIENT_PARTITION, str(patient_id))
        removed = 0
        if self.visits is not None:
            removed = self.visits.delete_for_patient(str(patient_id))
        logger.info("patient deleted id=%s visits_removed=%d", patient_id, removed)
        return removed


__all__ = [
    "PatientRepository",
    "validate_patient_data",
    "filter_patients",
    "sort_by_name",
    "patient_age",
    "full_name",
    "is_valid_email",
    "is_valid_phone",
]
