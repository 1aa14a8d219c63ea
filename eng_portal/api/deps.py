from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from eng_portal.core.roles import Role, UserStatus
from eng_portal.db.firestore import FirestoreStore
from eng_portal.db.storage import GCSBlobStore
from eng_portal.models.user import Identity, UserRecord
from eng_portal.services.entitlements import EntitlementManager, Resolution
from eng_portal.services.session import ROLE_EXPIRED_NOTICE


@lru_cache
def get_store() -> FirestoreStore:
    return FirestoreStore()


@lru_cache
def get_blob_store() -> GCSBlobStore:
    return GCSBlobStore()


def get_entitlements(store=Depends(get_store)) -> EntitlementManager:
    return EntitlementManager(store)


@dataclass(frozen=True)
class CurrentUser:
    """The resolved caller of a request: identity plus entitlements."""
    identity: Identity
    record: Optional[UserRecord]
    role: Optional[Role]
    status: Optional[UserStatus]
    notice: Optional[str] = None

    @property
    def uid(self) -> str:
        return self.identity.uid

    @property
    def email(self) -> Optional[str]:
        return self.identity.email

    @property
    def is_banned(self) -> bool:
        return self.status == UserStatus.BANNED

    @classmethod
    def from_resolution(cls, identity: Identity, resolution: Resolution) -> "CurrentUser":
        return cls(
            identity=identity,
            record=resolution.record,
            role=resolution.role,
            status=resolution.status,
            notice=ROLE_EXPIRED_NOTICE if resolution.expired else None,
        )

    def to_dict(self) -> dict:
        data = self.record.public_dict() if self.record else {"uid": self.uid, "email": self.email}
        data.update({
            "effectiveRole": self.role.value if self.role else None,
            "status": self.status.value if self.status else None,
            "notice": self.notice,
        })
        return data
