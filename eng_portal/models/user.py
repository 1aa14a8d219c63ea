from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eng_portal.core.roles import Role, UserStatus, parse_role, parse_status


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Firestore hands back aware datetimes; anything naive is taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Identity(BaseModel):
    """What the identity provider knows about the signed-in user."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    id_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)


class UserRecord(BaseModel):
    """The users/{uid} document."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    role: Role = Role.E_BASIC
    status: UserStatus = UserStatus.ACTIVE
    role_expires_at: Optional[datetime] = Field(default=None, alias="roleExpiresAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    seen_notifications: List[str] = Field(default_factory=list, alias="seenNotifications")

    # Closed enumerations: unknown labels are rejected here, not ranked later.
    @field_validator("role", mode="before")
    @classmethod
    def _check_role(cls, value):
        return parse_role(value)

    @field_validator("status", mode="before")
    @classmethod
    def _check_status(cls, value):
        return parse_status(value)

    @field_validator("role_expires_at", "created_at")
    @classmethod
    def _utc(cls, value):
        return as_utc(value)

    @field_validator("seen_notifications", mode="before")
    @classmethod
    def _seen(cls, value):
        return value or []

    @classmethod
    def from_document(cls, uid: str, data: dict) -> "UserRecord":
        return cls.model_validate({**data, "uid": uid})

    @property
    def is_banned(self) -> bool:
        return self.status == UserStatus.BANNED

    @property
    def effective_role(self) -> Optional[Role]:
        """The role used for gating: withheld entirely while banned."""
        return None if self.is_banned else self.role

    def is_expired(self, now: datetime) -> bool:
        return self.role_expires_at is not None and self.role_expires_at < now

    def public_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "role": self.role.value,
            "status": self.status.value,
            "roleExpiresAt": self.role_expires_at.isoformat() if self.role_expires_at else None,
        }
