from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eng_portal.models.user import as_utc

AUDIENCE_ALL = "all"


class Notification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    message: str
    audience: str = AUDIENCE_ALL    # a uid, a role label, or "all"
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value):
        return as_utc(value)

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Notification":
        return cls.model_validate({**data, "id": doc_id})
