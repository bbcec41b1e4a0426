"""Offline draft store for templates, reports and transcriptions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.storage.kv import KeyValueStorage
from src.utils.logger import get_logger

LOGGER = get_logger("airad.storage.drafts")

DRAFTS_KEY = "ai-rad-drafts"

DraftType = Literal["template", "report", "transcription"]


class Draft(BaseModel):
    id: str
    type: DraftType
    user_id: str = Field(alias="userId")
    data: Dict[str, Any] = Field(default_factory=dict)
    saved_at: Optional[datetime] = Field(default=None, alias="savedAt")
    is_offline: bool = Field(default=False, alias="isOffline")

    model_config = ConfigDict(populate_by_name=True)


class DraftStore:
    """Keyed draft records held in a single storage entry."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    def save_draft(self, draft: Draft) -> Draft:
        stamped = draft.model_copy(update={"saved_at": datetime.now(timezone.utc)})
        records = self._load()
        records[stamped.id] = stamped.model_dump(mode="json", by_alias=True)
        self._storage.set(DRAFTS_KEY, records)
        LOGGER.debug(
            "Saved draft.",
            extra={"context": {"draft_id": stamped.id, "type": stamped.type, "offline": stamped.is_offline}},
        )
        return stamped

    def get_draft(self, draft_id: str) -> Optional[Draft]:
        record = self._load().get(draft_id)
        return Draft.model_validate(record) if record else None

    def drafts_by_user(self, user_id: str) -> List[Draft]:
        return [draft for draft in self._all() if draft.user_id == user_id]

    def drafts_by_type(self, draft_type: DraftType) -> List[Draft]:
        return [draft for draft in self._all() if draft.type == draft_type]

    def delete_draft(self, draft_id: str) -> None:
        records = self._load()
        if records.pop(draft_id, None) is not None:
            self._storage.set(DRAFTS_KEY, records)

    def clear_user_drafts(self, user_id: str) -> int:
        records = self._load()
        remaining = {key: value for key, value in records.items() if value.get("userId") != user_id}
        removed = len(records) - len(remaining)
        if removed:
            self._storage.set(DRAFTS_KEY, remaining)
        return removed

    def _all(self) -> List[Draft]:
        return [Draft.model_validate(record) for record in self._load().values()]

    def _load(self) -> Dict[str, Dict[str, Any]]:
        stored = self._storage.get(DRAFTS_KEY)
        return dict(stored) if isinstance(stored, dict) else {}
