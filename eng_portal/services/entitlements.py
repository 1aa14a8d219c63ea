import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from eng_portal.core.errors import ExhaustedCode, InvalidCode, NotAuthenticated, StorageUnavailable
from eng_portal.core.roles import Role, UserStatus, parse_role, parse_status
from eng_portal.models.bonus_code import BonusCode, Grant
from eng_portal.models.user import Identity, UserRecord, as_utc

logger = logging.getLogger("engportal.entitlements")

USERS = "users"
BONUS_CODES = "bonusCodes"

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8

PROFILE_FIELDS = ("displayName", "email", "photoURL")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(raw: Optional[str]) -> str:
    return (raw or "").strip().upper()


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def stacked_expiration(now: datetime, current: Optional[datetime], duration_days: int) -> datetime:
    """New grants extend from the later of now and the current expiration."""
    base = max(now, current) if current is not None else now
    return base + timedelta(days=duration_days)


@dataclass(frozen=True)
class Resolution:
    """Outcome of turning an identity into {role, status}."""
    record: UserRecord
    role: Optional[Role]        # effective role, None while banned
    status: UserStatus
    expired: bool = False       # elevated role was just reset; show the notice once
    created: bool = False       # record was bootstrapped by this resolution


def _parse_user(uid: str, data: dict) -> UserRecord:
    try:
        return UserRecord.from_document(uid, data)
    except ValidationError as e:
        logger.error(f"Unreadable user record {uid}: {e}")
        raise StorageUnavailable(f"User record {uid} is unreadable.", cause=e) from e


def _parse_code(code_id: str, data: dict) -> BonusCode:
    try:
        return BonusCode.from_document(code_id, data)
    except ValidationError as e:
        logger.error(f"Unreadable bonus code {code_id}: {e}")
        raise StorageUnavailable(f"Bonus code {code_id} is unreadable.", cause=e) from e


class EntitlementManager:
    """
    Owns the per-user entitlement state: role, roleExpiresAt and status.

    All three fields can be written concurrently by the user's own sessions and by
    admins. Single-field-group writes rely on Firestore's per-document atomicity;
    the expiration reset and code redemption re-read inside a transaction.
    """

    def __init__(self, store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    # --- RECORDS ---
    async def get_record(self, uid: str) -> Optional[UserRecord]:
        data = self.store.get(USERS, uid)
        return _parse_user(uid, data) if data is not None else None

    async def list_users(self, search: Optional[str] = None) -> List[UserRecord]:
        records = [_parse_user(uid, data) for uid, data in self.store.query(USERS)]
        if search:
            term = search.strip().lower()
            records = [
                r for r in records
                if term in (r.display_name or "").lower() or term in (r.email or "").lower()
            ]
        return records

    async def bootstrap(self, identity: Identity) -> UserRecord:
        """
        First-sight record creation. A merge-upsert, never get-then-create: two
        concurrent first logins write the same defaults into the same document.
        """
        fields = {
            "email": identity.email,
            "displayName": identity.display_name,
            "photoURL": identity.photo_url,
            "role": Role.E_BASIC.value,
            "status": UserStatus.ACTIVE.value,
            "roleExpiresAt": None,
            "createdAt": self.clock().isoformat(),
        }
        self.store.set(USERS, identity.uid, fields, merge=True)
        logger.info(f"Bootstrapped user record {identity.uid}")
        return UserRecord.from_document(identity.uid, fields)

    async def save_profile(self, uid: str, fields: dict) -> dict:
        """
        Owner-editable fields only; role, status and expiration never pass through here.
        Returns the fields actually written.
        """
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
        if updates:
            self.store.update(USERS, uid, updates)
        return updates

    # --- EXPIRATION ---
    async def check_expiration(self, record: UserRecord) -> Tuple[UserRecord, bool]:
        """Resets an expired elevated role to E-BASIC. Returns (record, was_reset)."""
        now = self.clock()
        if not record.is_expired(now):
            return record, False

        def downgrade(txn):
            data = txn.get(USERS, record.uid)
            if data is None:
                return record, False
            current = _parse_user(record.uid, data)
            # A redemption or admin edit may have extended it since we read it.
            if not current.is_expired(now):
                return current, False
            txn.update(USERS, record.uid, {"role": Role.E_BASIC.value, "roleExpiresAt": None})
            return current.model_copy(update={"role": Role.E_BASIC, "role_expires_at": None}), True

        updated, reset = self.store.run_transaction(downgrade)
        if reset:
            logger.info(f"Role of {record.uid} expired; reset to {Role.E_BASIC.value}")
        return updated, reset

    async def resolve(self, identity: Identity) -> Resolution:
        record = await self.get_record(identity.uid)
        if record is None:
            record = await self.bootstrap(identity)
            return Resolution(record=record, role=record.effective_role, status=record.status, created=True)

        if record.is_banned:
            return Resolution(record=record, role=None, status=record.status)

        record, expired = await self.check_expiration(record)
        return Resolution(record=record, role=record.effective_role, status=record.status, expired=expired)

    # --- BONUS CODES ---
    async def redeem(self, raw_code: str, uid: Optional[str]) -> Grant:
        if not uid:
            raise NotAuthenticated()
        code = normalize_code(raw_code)
        if not code:
            raise InvalidCode()

        matches = self.store.query(BONUS_CODES, [("code", "==", code)], limit=1)
        if not matches:
            raise InvalidCode()
        code_id, _ = matches[0]
        now = self.clock()

        def apply(txn):
            # Reads first, then writes: usesLeft is re-checked against the committed value.
            code_data = txn.get(BONUS_CODES, code_id)
            user_data = txn.get(USERS, uid)
            if code_data is None:
                raise InvalidCode()
            if user_data is None:
                raise NotAuthenticated("No account record for the signed-in user.")
            bonus = _parse_code(code_id, code_data)
            user = _parse_user(uid, user_data)
            if bonus.exhausted:
                raise ExhaustedCode()

            expires_at = stacked_expiration(now, user.role_expires_at, bonus.duration_days)
            txn.update(USERS, uid, {"role": bonus.role.value, "roleExpiresAt": expires_at})
            txn.update(BONUS_CODES, code_id, {"usesLeft": bonus.uses_left - 1})
            return Grant(role=bonus.role, duration_days=bonus.duration_days, expires_at=expires_at)

        grant = self.store.run_transaction(apply)
        logger.info(f"{uid} redeemed {code}: {grant.role.value} until {grant.expires_at.isoformat()}")
        return grant

    async def create_code(self, role, duration_days: int, uses: int, code: Optional[str] = None) -> BonusCode:
        role = parse_role(role)
        if duration_days <= 0:
            raise ValueError("durationDays must be positive")
        if uses <= 0:
            raise ValueError("uses must be positive")

        if code:
            code = normalize_code(code)
            if self.store.query(BONUS_CODES, [("code", "==", code)], limit=1):
                raise ValueError(f"Code {code} already exists")
        else:
            code = generate_code()
            while self.store.query(BONUS_CODES, [("code", "==", code)], limit=1):
                code = generate_code()

        fields = {
            "code": code,
            "role": role.value,
            "durationDays": int(duration_days),
            "usesLeft": int(uses),
            "createdAt": self.clock(),
        }
        code_id = self.store.add(BONUS_CODES, fields)
        return BonusCode.from_document(code_id, fields)

    async def list_codes(self) -> List[BonusCode]:
        return [_parse_code(code_id, data) for code_id, data in self.store.query(BONUS_CODES)]

    async def delete_code(self, code_id: str):
        self.store.delete(BONUS_CODES, code_id)

    # --- ADMIN ---
    async def admin_update(self, uid: str, role, status, role_expires_at: Optional[datetime]) -> UserRecord:
        """Privileged overwrite. Only the labels are checked; the admin is trusted."""
        role = parse_role(role)
        status = parse_status(status)
        self.store.update(USERS, uid, {
            "role": role.value,
            "status": status.value,
            "roleExpiresAt": as_utc(role_expires_at),
        })
        return await self.get_record(uid)

    async def ban(self, uid: str) -> Optional[UserRecord]:
        record = await self.get_record(uid)
        if record is None:
            return None
        if record.role == Role.ADMIN:
            raise ValueError("Administrators cannot be banned.")
        self.store.update(USERS, uid, {"status": UserStatus.BANNED.value})
        return record.model_copy(update={"status": UserStatus.BANNED})
