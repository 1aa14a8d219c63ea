"""
Per-client auth state.

One AuthSession is built per client (window, CLI process, test) with its collaborators
injected, started once and closed on teardown. It listens to the identity provider and
publishes a resolved {identity, role, status} snapshot to subscribers.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from eng_portal.core.errors import NotAuthenticated, PortalError
from eng_portal.core.roles import Role, UserStatus
from eng_portal.models.bonus_code import Grant
from eng_portal.models.user import Identity

logger = logging.getLogger("engportal.session")

ROLE_EXPIRED_NOTICE = "Your role has expired. Your access was reset to E-BASIC."


class SessionState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING = "resolving"
    READY = "ready"
    BANNED = "banned"


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    current_user: Optional[Identity] = None
    user_role: Optional[Role] = None
    user_status: Optional[UserStatus] = None
    role_expires_at: Optional[datetime] = None
    notice: Optional[str] = None

    @property
    def loading(self) -> bool:
        return self.state in (SessionState.LOADING, SessionState.RESOLVING)


@dataclass
class PhotoUpload:
    filename: str
    content: bytes
    content_type: Optional[str] = None


SnapshotListener = Callable[[SessionSnapshot], None]


async def apply_profile_update(idp, entitlements, blobs, identity: Identity, fields: dict,
                               photo: Optional[PhotoUpload] = None) -> dict:
    """
    Order: photo upload, then identity-provider changes, then the user record.
    The record must never describe a provider change that did not happen.
    Returns the fields written to the record.
    """
    updates = {k: v for k, v in fields.items() if v is not None}
    if photo is not None:
        ref = blobs.upload(f"profile_pictures/{identity.uid}/{photo.filename}", photo.content, photo.content_type)
        photo_url = blobs.get_public_url(ref)
        await idp.update_photo_url(photo_url)
        updates["photoURL"] = photo_url

    display_name = updates.get("displayName")
    if display_name and display_name != identity.display_name:
        await idp.update_display_name(display_name)
    email = updates.get("email")
    if email and email != identity.email:
        await idp.update_email(email)
    password = updates.pop("password", None)
    if password:
        await idp.update_password(password)

    if not updates:
        return {}
    return await entitlements.save_profile(identity.uid, updates)


class AuthSession:
    def __init__(self, identity_provider, entitlements, blob_store):
        self._idp = identity_provider
        self._entitlements = entitlements
        self._blobs = blob_store
        self._snapshot = SessionSnapshot(SessionState.LOADING)
        self._listeners: List[SnapshotListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._generation = 0

    # --- READ-ONLY STATE ---
    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def current_user(self) -> Optional[Identity]:
        return self._snapshot.current_user

    @property
    def user_role(self) -> Optional[Role]:
        return self._snapshot.user_role

    @property
    def user_status(self) -> Optional[UserStatus]:
        return self._snapshot.user_status

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    @property
    def notice(self) -> Optional[str]:
        return self._snapshot.notice

    # --- LIFECYCLE ---
    async def start(self):
        if self._unsubscribe is None:
            self._unsubscribe = await self._idp.on_identity_change(self._on_identity)

    async def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Calls listener with the current snapshot now and on every change."""
        self._listeners.append(listener)
        listener(self._snapshot)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _publish(self, snapshot: SessionSnapshot):
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    # --- RESOLUTION ---
    async def _on_identity(self, identity: Optional[Identity]):
        self._generation += 1
        generation = self._generation

        if identity is None:
            self._publish(SessionSnapshot(SessionState.UNAUTHENTICATED))
            return

        self._publish(SessionSnapshot(SessionState.RESOLVING, current_user=identity))
        try:
            resolution = await self._entitlements.resolve(identity)
        except Exception as e:
            if isinstance(e, PortalError):
                logger.error(f"Could not resolve {identity.uid}: {e}")
            else:
                logger.exception(f"Unexpected error resolving {identity.uid}")
            if generation == self._generation:
                # Fail closed: signed in, no entitlements.
                self._publish(SessionSnapshot(SessionState.READY, current_user=identity))
            return

        if generation != self._generation:
            logger.debug(f"Discarding stale resolution for {identity.uid}")
            return

        if resolution.status == UserStatus.BANNED:
            self._publish(SessionSnapshot(
                SessionState.BANNED, current_user=identity, user_status=UserStatus.BANNED,
            ))
            return

        self._publish(SessionSnapshot(
            SessionState.READY,
            current_user=identity,
            user_role=resolution.role,
            user_status=resolution.status,
            role_expires_at=resolution.record.role_expires_at,
            notice=ROLE_EXPIRED_NOTICE if resolution.expired else None,
        ))

    # --- OPERATIONS ---
    # None of these touch the snapshot directly: state follows the provider's next identity event.
    async def signup(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        identity = await self._idp.create_account(email, password)
        if display_name:
            identity = await self._idp.update_display_name(display_name)
        await self._entitlements.bootstrap(identity)
        return identity

    async def login(self, email: str, password: str) -> Identity:
        return await self._idp.sign_in(email, password)

    async def login_with_google(self, id_token: str) -> Identity:
        return await self._idp.sign_in_federated(id_token, provider_id="google.com")

    async def logout(self):
        await self._idp.sign_out()

    async def update_profile(self, fields: dict, photo: Optional[PhotoUpload] = None) -> dict:
        identity = self._idp.current_identity
        if identity is None:
            raise NotAuthenticated()
        return await apply_profile_update(self._idp, self._entitlements, self._blobs, identity, fields, photo)

    async def redeem_code(self, code: str) -> Grant:
        identity = self._idp.current_identity
        if identity is None:
            raise NotAuthenticated()
        grant = await self._entitlements.redeem(code, identity.uid)
        await self._idp.reload()
        return grant
