import logging
from datetime import timedelta

from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from eng_portal import config
from eng_portal.core.errors import IdentityProviderError, NotAuthenticated
from eng_portal.db.firestore import initialize_app
from eng_portal.models.user import Identity

logger = logging.getLogger("engportal.auth")


def _identity_from_claims(claims: dict) -> Identity:
    return Identity(
        uid=claims["uid"],
        email=claims.get("email"),
        display_name=claims.get("name"),
        photo_url=claims.get("picture"),
    )


def verify_id_token(token: str) -> Identity:
    """Verifies a Firebase ID token sent as a Bearer header."""
    initialize_app()
    try:
        claims = firebase_auth.verify_id_token(token)
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
        logger.info(f"ID token rejected: {e}")
        raise NotAuthenticated("Invalid or expired token") from e
    return _identity_from_claims(claims)


def create_session_cookie(id_token: str) -> str:
    initialize_app()
    try:
        return firebase_auth.create_session_cookie(id_token, expires_in=timedelta(days=config.SESSION_COOKIE_DAYS))
    except (ValueError, firebase_auth.InvalidIdTokenError) as e:
        logger.info(f"Session cookie refused: {e}")
        raise NotAuthenticated("Invalid or expired token") from e


def verify_session_cookie(cookie: str) -> Identity:
    initialize_app()
    try:
        claims = firebase_auth.verify_session_cookie(cookie)
    except (ValueError, firebase_auth.InvalidSessionCookieError, firebase_auth.ExpiredSessionCookieError,
            firebase_auth.RevokedSessionCookieError, firebase_auth.CertificateFetchError) as e:
        logger.info(f"Session cookie rejected: {e}")
        raise NotAuthenticated("Session expired") from e
    return _identity_from_claims(claims)


class AdminIdentityUpdater:
    """
    Server-side stand-in for the client's provider profile calls: same update_* surface,
    applied through the Admin SDK to one uid.
    """

    def __init__(self, uid: str):
        self.uid = uid

    def _update(self, **kwargs):
        initialize_app()
        try:
            firebase_auth.update_user(self.uid, **kwargs)
        except ValueError as e:
            raise IdentityProviderError("INVALID_ARGUMENT", str(e)) from e
        except FirebaseError as e:
            logger.info(f"Profile update for {self.uid} rejected: {e.code}")
            raise IdentityProviderError(str(e.code), str(e)) from e

    async def update_display_name(self, display_name: str):
        self._update(display_name=display_name)

    async def update_email(self, email: str):
        self._update(email=email)

    async def update_password(self, password: str):
        if len(password) < 6:
            raise IdentityProviderError("WEAK_PASSWORD", "Password must be at least 6 characters")
        self._update(password=password)

    async def update_photo_url(self, photo_url: str):
        self._update(photo_url=photo_url)
