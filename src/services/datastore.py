"""Row store for the managed database, with an in-memory mock mode.

Remote mode talks PostgREST (the REST layer of the managed database) over
``httpx`` using the service-role key. Row ownership is therefore enforced by
the route handlers, which always filter on ``user_id``.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from src.services.auth import MOCK_USERS
from src.utils.config import get_settings
from src.utils.logger import get_logger

LOGGER = get_logger("airad.services.datastore")
AUDIT_LOGGER = get_logger("airad.audit")

Filters = Dict[str, Any]

# Tables keyed by user rather than by a generated id.
USER_KEYED_TABLES = {"profiles", "user_preferences", "subscriptions"}
KNOWN_TABLES = (
    "profiles",
    "user_preferences",
    "transcription_macros",
    "macro_categories",
    "templates_personal",
    "templates_global",
    "subscriptions",
    "report_sessions",
    "transcribe_sessions",
)


class DataStoreError(RuntimeError):
    """Raised when a read or write against the database fails."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataStore:
    """Minimal table gateway used by the API route handlers."""

    REQUEST_TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        *,
        use_mock: Optional[bool] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        seed: bool = True,
    ) -> None:
        settings = get_settings()
        self.use_mock = settings.USE_MOCK_BACKEND if use_mock is None else use_mock
        self.base_url = base_url or (settings.SUPABASE_URL or "")
        self._lock = threading.RLock()
        self._tables: Dict[str, List[Dict[str, Any]]] = {table: [] for table in KNOWN_TABLES}
        self._http_client: Optional[httpx.Client] = None

        if self.use_mock:
            if seed:
                self._seed_mock_data()
            return

        if http_client is not None:
            self._http_client = http_client
            return

        key = api_key
        if key is None and settings.SUPABASE_SERVICE_ROLE_KEY is not None:
            key = settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
        if not self.base_url or not key:
            raise DataStoreError("Database URL and service role key must be configured.")

        self._http_client = httpx.Client(
            base_url=f"{self.base_url.rstrip('/')}/rest/v1",
            timeout=self.REQUEST_TIMEOUT_SECONDS,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        gte: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self._audit("select", table, filters)
        if self.use_mock:
            with self._lock:
                rows = [
                    copy.deepcopy(row)
                    for row in self._table(table)
                    if self._matches(row, filters, gte)
                ]
            if order_by:
                rows.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by) or ""), reverse=descending)
            return rows[:limit] if limit is not None else rows

        params = self._filter_params(filters, gte)
        params.append(("select", "*"))
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        return self._remote("GET", table, params=params)

    def select_one(self, table: str, filters: Filters) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        self._audit("insert", table)
        if self.use_mock:
            record = self._new_record(table, row)
            with self._lock:
                self._table(table).append(record)
            return copy.deepcopy(record)

        rows = self._remote(
            "POST", table, json=row, headers={"Prefer": "return=representation"}
        )
        if not rows:
            raise DataStoreError(f"Insert into {table} returned no rows.")
        return rows[0]

    def update(self, table: str, filters: Filters, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._audit("update", table, filters)
        if not filters:
            raise DataStoreError("Refusing to update without filters.")
        if self.use_mock:
            updated: List[Dict[str, Any]] = []
            with self._lock:
                for row in self._table(table):
                    if self._matches(row, filters, None):
                        row.update(copy.deepcopy(changes))
                        row["updated_at"] = utc_now_iso()
                        updated.append(copy.deepcopy(row))
            return updated

        payload = {**changes, "updated_at": utc_now_iso()}
        return self._remote(
            "PATCH",
            table,
            params=self._filter_params(filters, None),
            json=payload,
            headers={"Prefer": "return=representation"},
        )

    def upsert(self, table: str, row: Dict[str, Any], *, on_conflict: str) -> Dict[str, Any]:
        self._audit("upsert", table, {on_conflict: row.get(on_conflict)})
        if self.use_mock:
            with self._lock:
                for existing in self._table(table):
                    if existing.get(on_conflict) == row.get(on_conflict):
                        existing.update(copy.deepcopy(row))
                        existing["updated_at"] = utc_now_iso()
                        return copy.deepcopy(existing)
                record = self._new_record(table, row)
                self._table(table).append(record)
                return copy.deepcopy(record)

        rows = self._remote(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            json={**row, "updated_at": utc_now_iso()},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        if not rows:
            raise DataStoreError(f"Upsert into {table} returned no rows.")
        return rows[0]

    def delete(self, table: str, filters: Filters) -> int:
        self._audit("delete", table, filters)
        if not filters:
            raise DataStoreError("Refusing to delete without filters.")
        if self.use_mock:
            with self._lock:
                rows = self._table(table)
                kept = [row for row in rows if not self._matches(row, filters, None)]
                removed = len(rows) - len(kept)
                self._tables[table] = kept
            return removed

        rows = self._remote(
            "DELETE",
            table,
            params=self._filter_params(filters, None),
            headers={"Prefer": "return=representation"},
        )
        return len(rows or [])

    def count(self, table: str, filters: Optional[Filters] = None, *, gte: Optional[Filters] = None) -> int:
        self._audit("count", table, filters)
        if self.use_mock:
            with self._lock:
                return sum(1 for row in self._table(table) if self._matches(row, filters, gte))

        client = self._http()
        params = self._filter_params(filters, gte)
        params.append(("select", "*"))
        try:
            response = client.head(
                f"/{table}", params=params, headers={"Prefer": "count=exact"}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._log_failure("count", table, exc)
            raise DataStoreError(f"Count on {table} failed.") from exc
        content_range = response.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        return int(total) if total.isdigit() else 0

    def close(self) -> None:
        """Release any HTTP resources."""

        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> "DataStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401 - context manager contract
        self.close()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self._tables:
            raise DataStoreError(f"Unknown table '{table}'.")
        return self._tables[table]

    def _new_record(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now_iso()
        record = copy.deepcopy(row)
        if table not in USER_KEYED_TABLES:
            record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", now)
        record.setdefault("updated_at", now)
        return record

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Filters], gte: Optional[Filters]) -> bool:
        for column, expected in (filters or {}).items():
            if row.get(column) != expected:
                return False
        for column, bound in (gte or {}).items():
            value = row.get(column)
            if value is None or value < bound:
                return False
        return True

    @staticmethod
    def _filter_params(filters: Optional[Filters], gte: Optional[Filters]) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        for column, value in (filters or {}).items():
            if value is None:
                params.append((column, "is.null"))
            elif isinstance(value, bool):
                params.append((column, f"eq.{str(value).lower()}"))
            else:
                params.append((column, f"eq.{value}"))
        for column, value in (gte or {}).items():
            params.append((column, f"gte.{value}"))
        return params

    def _http(self) -> httpx.Client:
        if self._http_client is None:
            raise DataStoreError("Database client is closed.")
        return self._http_client

    def _remote(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        client = self._http()
        try:
            response = client.request(
                method, f"/{table}", params=list(params or []), json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._log_failure(method.lower(), table, exc)
            raise DataStoreError(f"{method} on {table} failed.") from exc

        if not response.content:
            return []
        payload = response.json()
        if isinstance(payload, dict):
            return [payload]
        return list(payload)

    def _log_failure(self, operation: str, table: str, error: Exception) -> None:
        LOGGER.error(
            "Database request failed.",
            extra={"context": {"operation": operation, "table": table, "error": str(error)}},
        )

    def _audit(self, action: str, table: str, fields: Optional[Dict[str, Any]] = None) -> None:
        context: Dict[str, Any] = {
            "action": action,
            "table": table,
            "mode": "mock" if self.use_mock else "remote",
        }
        if fields:
            context["filters"] = sorted(fields)
        AUDIT_LOGGER.debug("Database interaction", extra={"context": context})

    def _seed_mock_data(self) -> None:
        for user in MOCK_USERS.values():
            self._tables["profiles"].append(
                self._new_record(
                    "profiles",
                    {
                        "user_id": user.id,
                        "email": user.email,
                        "name": user.name,
                        "specialty": "Radiology" if user.role == "radiologist" else None,
                        "institution": None,
                        "institution_id": None,
                        "role": user.role,
                        "style_preferences": None,
                    },
                )
            )
        for template in _SEED_GLOBAL_TEMPLATES:
            self._tables["templates_global"].append(
                self._new_record("templates_global", copy.deepcopy(template))
            )


def _sections(names: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    sections = [
        {"id": f"section-{index}", "name": name, "content": content}
        for index, (name, content) in enumerate(names, start=1)
    ]
    raw = "\n\n".join(f"{section['name'].upper()}:\n{section['content']}" for section in sections)
    return {"sections": sections, "rawContent": raw}


_SEED_GLOBAL_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "11111111-1111-4111-8111-111111111111",
        "name": "CT Chest",
        "modality": "CT",
        "body_part": "Chest",
        "description": "Standard CT chest report for routine and follow-up studies.",
        "version": 1,
        "content": _sections(
            [
                ("Clinical Indication", "{{indication}}"),
                ("Technique", "Axial CT images of the chest [with/without] contrast."),
                ("Findings", "Lungs: [findings]\nMediastinum: [findings]\nPleura: No effusion."),
                ("Impression", "[impression]"),
            ]
        ),
        "tags": ["chest", "ct"],
        "is_published": True,
        "created_by": MOCK_USERS["admin"].id,
    },
    {
        "id": "22222222-2222-4222-8222-222222222222",
        "name": "MRI Brain",
        "modality": "MRI",
        "body_part": "Brain",
        "description": "MRI brain report covering parenchyma, ventricles and vessels.",
        "version": 1,
        "content": _sections(
            [
                ("Clinical Indication", "{{indication}}"),
                ("Technique", "Multiplanar multisequence MRI of the brain."),
                ("Findings", "Parenchyma: [findings]\nVentricles: Normal in size."),
                ("Impression", "[impression]"),
            ]
        ),
        "tags": ["neuro", "mri"],
        "is_published": True,
        "created_by": MOCK_USERS["admin"].id,
    },
    {
        "id": "33333333-3333-4333-8333-333333333333",
        "name": "US Abdomen",
        "modality": "Ultrasound",
        "body_part": "Abdomen",
        "description": "Draft abdominal ultrasound template pending review.",
        "version": 1,
        "content": _sections([("Findings", "[findings]"), ("Impression", "[impression]")]),
        "tags": ["abdomen"],
        "is_published": False,
        "created_by": MOCK_USERS["admin"].id,
    },
]
