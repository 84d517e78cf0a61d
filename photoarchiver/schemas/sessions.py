# photoarchiver/schemas/sessions.py
# Retrieval sessions: blobs waiting for rehydration, persisted one JSON file per session.

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class PendingItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    blob_identifier: str = Field(alias="blobIdentifier")
    local_path: str = Field(alias="localPath")


class RetrievalSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    container: str
    path: str
    started: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pending_items: List[PendingItem] = Field(default_factory=list, alias="pendingItems")

    @classmethod
    def load(cls, file: Path) -> "RetrievalSession":
        return cls.model_validate_json(file.read_text(encoding="utf-8"))

    def save(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        file = directory / f"{self.id}.json"
        file.write_text(self.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        return file
