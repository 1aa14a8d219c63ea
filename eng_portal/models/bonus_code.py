from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eng_portal.core.roles import Role, parse_role
from eng_portal.models.user import as_utc


class BonusCode(BaseModel):
    """A bonusCodes/{id} document: a finite-use, time-limited role grant."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    code: str
    role: Role
    duration_days: int = Field(alias="durationDays")
    uses_left: int = Field(alias="usesLeft")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("role", mode="before")
    @classmethod
    def _check_role(cls, value):
        return parse_role(value)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value):
        return as_utc(value)

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "BonusCode":
        return cls.model_validate({**data, "id": doc_id})

    @property
    def exhausted(self) -> bool:
        return self.uses_left <= 0

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "role": self.role.value,
            "durationDays": self.duration_days,
            "usesLeft": self.uses_left,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Grant(BaseModel):
    """Result of a successful redemption, shown back to the user."""
    role: Role
    duration_days: int
    expires_at: datetime
