from __future__ import annotations

import logging
from typing import Any

from anviksha_ai.models import AnalysisResult

from .database import LocalStateDB

logger = logging.getLogger(__name__)

RECORDS_KEY = "patientRecords"


class RecordStore:
    """Newest-first list of saved analysis results."""

    def __init__(self, db: LocalStateDB) -> None:
        self._db = db

    def _raw_items(self) -> list[Any]:
        raw = self._db.read_json(RECORDS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Patient records were not a list; ignoring stored value")
            return []
        return raw

    def list_records(self) -> list[AnalysisResult]:
        records: list[AnalysisResult] = []
        for item in self._raw_items():
            if not isinstance(item, dict):
                continue
            try:
                records.append(AnalysisResult.from_payload(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping corrupt patient record: %s", exc)
        return records

    def get(self, record_id: str) -> AnalysisResult | None:
        for record in self.list_records():
            if record.id == record_id:
                return record
        return None

    def save(self, result: AnalysisResult) -> bool:
        """Prepend ``result`` unless a record with the same id exists."""
        records = self.list_records()
        if any(record.id == result.id for record in records):
            return False
        records.insert(0, result)
        self._write(records)
        return True

    def delete(self, record_id: str) -> bool:
        records = self.list_records()
        remaining = [record for record in records if record.id != record_id]
        if len(remaining) == len(records):
            return False
        self._write(remaining)
        return True

    def _write(self, records: list[AnalysisResult]) -> None:
        self._db.write_json(RECORDS_KEY, [record.to_payload() for record in records])
