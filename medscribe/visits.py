"""Visit records.

A visit is stored under its owning patient's id as partition key, so all
visits of a patient can be listed, and removed, together.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from medscribe.errors import EntityExists, ValidationError
from medscribe.sanitizer import sanitize_text
from medscribe.table_store import PARTITION_KEY, ROW_KEY, TableStore
from medscribe.time_utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

VISITS_TABLE = "visits"

EDITABLE_FIELDS = ("date", "time", "transcript", "notes", "noteType", "specialty")


def _sort_key(visit: Mapping[str, Any]) -> str:
    return str(visit.get("timestamp") or f"{visit.get('date') or ''}T{visit.get('time') or ''}")


def newest_first(visits: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(visits, key=_sort_key, reverse=True)


class VisitRepository:
    def __init__(self, store: TableStore) -> None:
        self.store = store

    def list_visits(self, patient_id: str, limit: Optional[int] = 100) -> List[Dict[str, Any]]:
        """Visits of ``patient_id``, newest first."""

        visits = newest_first(self.store.list(str(patient_id), limit=None))
        if limit is not None:
            visits = visits[: max(int(limit), 0)]
        return visits

    def get_visit(self, patient_id: str, visit_id: str) -> Dict[str, Any]:
        return self.store.get(str(patient_id), str(visit_id))

    def create_visit(
        self,
        data: Mapping[str, Any],
        *,
        created_by: Optional[str] = None,
        created_by_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        patient_id = data.get("patientId")
        if not patient_id:
            raise ValidationError("patientId is required")
        now = utc_now()
        visit_id = str(data.get("id") or uuid.uuid4().hex)
        entity: Dict[str, Any] = {
            PARTITION_KEY: str(patient_id),
            ROW_KEY: visit_id,
            "id": visit_id,
            "patientId": str(patient_id),
            "date": data.get("date") or now.date().isoformat(),
            "time": data.get("time") or now.strftime("%H:%M"),
            "transcript": str(data.get("transcript") or ""),
            "notes": sanitize_text(str(data.get("notes") or "")),
            "noteType": data.get("noteType"),
            "specialty": data.get("specialty"),
            "timestamp": isoformat_z(now),
            "createdBy": created_by,
            "createdByName": created_by_name,
        }
        try:
            created = self.store.create(entity)
        except EntityExists:
            raise EntityExists(f"Visit {visit_id!r} already exists") from None
        logger.info("visit created id=%s patient=%s by=%s", visit_id, patient_id, created_by)
        return created

    def update_visit(self, patient_id: str, visit_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.get_visit(patient_id, visit_id)
        update: Dict[str, Any] = {PARTITION_KEY: current[PARTITION_KEY], ROW_KEY: current[ROW_KEY]}
        for field in EDITABLE_FIELDS:
            if field in changes:
                update[field] = changes[field]
        if "notes" in update:
            update["notes"] = sanitize_text(str(update["notes"] or ""))
        update["updatedAt"] = isoformat_z(utc_now())
        return self.store.upsert(update, merge=True)

    def delete_visit(self, patient_id: str, visit_id: str) -> None:
        self.store.delete(str(patient_id), str(visit_id))

    def delete_for_patient(self, patient_id: str) -> int:
        return self.store.delete_partition(str(patient_id))

    def recent_visits(self, patient_id: str, count: int = 3) -> List[Dict[str, Any]]:
        return self.list_visits(patient_id, limit=count)


__all__ = ["VisitRepository", "VISITS_TABLE", "newest_first"]
