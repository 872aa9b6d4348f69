from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from openpyxl import Workbook, load_workbook

logger = logging.getLogger(__name__)

STORE_HEADERS = ["ID", "document_json"]

IPD_BOOKINGS = "ipd_bookings"
OPD_BOOKINGS = "bookings"
BLOOD_TESTS = "bloodTests"
SURGERIES = "surgeries"
MORTALITY_REPORTS = "mortalityReports"
BEDS = "beds"

BED_AVAILABLE = "available"
BED_OCCUPIED = "occupied"
BED_STATUSES = (BED_AVAILABLE, BED_OCCUPIED)

Listener = Callable[[str, Dict[str, Dict[str, Any]]], None]


def _ensure_headers(ws):
    for idx, header in enumerate(STORE_HEADERS, start=1):
        ws.cell(row=1, column=idx, value=header)


def _row_key(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float):
        value = int(value)
    return str(value)


class RecordStore:
    """Document collections kept in one workbook, one sheet per collection.

    Each row holds a key and the JSON document stored under it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._listeners: Dict[str, List[Listener]] = {}

    def _load_workbook(self):
        if not self.path.exists():
            wb = Workbook()
            wb.save(self.path)
            wb.close()
        return load_workbook(self.path)

    def _sheet(self, wb, collection: str):
        if collection not in wb.sheetnames:
            ws = wb.create_sheet(title=collection)
            _ensure_headers(ws)
        return wb[collection]

    def _read(self, ws) -> Dict[str, Dict[str, Any]]:
        documents: Dict[str, Dict[str, Any]] = {}
        for row in ws.iter_rows(min_row=2, values_only=True):
            if not row or row[0] is None:
                continue
            key = _row_key(row[0])
            try:
                documents[key] = json.loads(row[1]) if len(row) > 1 and row[1] else {}
            except (json.JSONDecodeError, TypeError):
                logger.warning("Skipping unreadable document %s in sheet %s", key, ws.title)
                continue
        return documents

    def _next_key(self, ws) -> str:
        ids = []
        for row in ws.iter_rows(min_row=2, values_only=True):
            if row and row[0] is not None:
                try:
                    ids.append(int(float(str(row[0]))))
                except (ValueError, TypeError):
                    continue
        return str((max(ids) + 1) if ids else 1)

    def get_all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        wb = load_workbook(self.path)
        try:
            if collection not in wb.sheetnames:
                return {}
            return self._read(wb[collection])
        finally:
            wb.close()

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        return self.get_all(collection).get(str(key))

    def append_child(self, collection: str, document: Dict[str, Any]) -> str:
        wb = self._load_workbook()
        ws = self._sheet(wb, collection)
        key = self._next_key(ws)
        ws.append([key, json.dumps(document)])
        snapshot = self._read(ws)
        wb.save(self.path)
        wb.close()
        logger.info("Added %s/%s", collection, key)
        self._notify(collection, snapshot)
        return key

    def update(self, collection: str, key: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` into the top level of an existing document."""
        wb = self._load_workbook()
        ws = self._sheet(wb, collection)
        for row in ws.iter_rows(min_row=2):
            if _row_key(row[0].value) != str(key):
                continue
            try:
                document = json.loads(row[1].value) if row[1].value else {}
            except (json.JSONDecodeError, TypeError):
                document = {}
            document.update(changes)
            row[1].value = json.dumps(document)
            snapshot = self._read(ws)
            wb.save(self.path)
            wb.close()
            logger.info("Updated %s/%s (%s)", collection, key, ", ".join(sorted(changes)))
            self._notify(collection, snapshot)
            return document
        wb.close()
        raise KeyError(f"{collection}/{key} not found in record store")

    def subscribe(self, collection: str, callback: Listener) -> Callable[[], None]:
        listeners = self._listeners.setdefault(collection, [])
        listeners.append(callback)

        def unsubscribe():
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _notify(self, collection: str, snapshot: Dict[str, Dict[str, Any]]):
        for callback in list(self._listeners.get(collection, [])):
            callback(collection, snapshot)


class BedInventory:
    def __init__(self, store: RecordStore):
        self.store = store

    def _find(self, room_type: str, bed_id: str) -> Optional[str]:
        for key, doc in self.store.get_all(BEDS).items():
            if doc.get("roomType") == room_type and str(doc.get("bedId")) == str(bed_id):
                return key
        return None

    def set_bed_status(self, room_type: str, bed_id: str, status: str):
        status = (status or "").lower()
        if status not in BED_STATUSES:
            raise ValueError(f"Unknown bed status: {status!r}")
        key = self._find(room_type, bed_id)
        if key is None:
            self.store.append_child(BEDS, {"roomType": room_type, "bedId": str(bed_id), "status": status})
        else:
            self.store.update(BEDS, key, {"status": status})
        logger.info("Bed %s/%s is now %s", room_type, bed_id, status)

    def all_beds(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        grouped: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for doc in self.store.get_all(BEDS).values():
            room_type = doc.get("roomType") or "unassigned"
            grouped.setdefault(room_type, {})[str(doc.get("bedId", ""))] = doc
        return grouped

    def available_beds(self, room_type: str) -> List[str]:
        beds = self.all_beds().get(room_type, {})
        return [bed_id for bed_id, doc in beds.items() if (doc.get("status") or "").lower() == BED_AVAILABLE]
