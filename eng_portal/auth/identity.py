"""Identity provider adapter over the Firebase Identity Toolkit REST API."""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from eng_portal.core.errors import IdentityProviderError, NotAuthenticated
from eng_portal.models.user import Identity

logger = logging.getLogger("engportal.identity")

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

IdentityCallback = Callable[[Optional[Identity]], Awaitable[None]]

# Identity Toolkit error codes -> messages shown to the user verbatim.
ERROR_MESSAGES: Dict[str, str] = {
    "EMAIL_EXISTS": "This email is already in use.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "INVALID_EMAIL": "The email address is badly formatted.",
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "USER_DISABLED": "This account has been disabled.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Try again later.",
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": "Please sign in again before changing this.",
    "TOKEN_EXPIRED": "Please sign in again before changing this.",
    "INVALID_IDP_RESPONSE": "The federated sign-in was cancelled or rejected.",
}


class FirebaseIdentityProvider:
    """
    Holds the signed-in identity for one client and notifies listeners on sign-in/sign-out.
    Profile updates change the identity in place without notifying, as Firebase does.
    """

    def __init__(self, api_key: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._listeners: List[IdentityCallback] = []
        self.current_identity: Optional[Identity] = None

    async def _call(self, endpoint: str, payload: dict) -> dict:
        try:
            response = await self._client.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:{endpoint}",
                params={"key": self._api_key},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable ({endpoint}): {e}")
            raise IdentityProviderError("NETWORK_REQUEST_FAILED", "Could not reach the sign-in service.") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
            raw = (data.get("error") or {}).get("message") or f"HTTP_{response.status_code}"
            code, _, detail = raw.partition(" : ")
            code = code.strip()
            logger.info(f"Identity provider rejected {endpoint}: {code}")
            raise IdentityProviderError(code, ERROR_MESSAGES.get(code, detail.strip() or code))
        return data

    @staticmethod
    def _identity_from(data: dict, previous: Optional[Identity] = None) -> Identity:
        base = previous.model_dump() if previous else {}
        return Identity(
            uid=data.get("localId") or base.get("uid"),
            email=data.get("email", base.get("email")),
            display_name=data.get("displayName", base.get("display_name")),
            photo_url=data.get("photoUrl", base.get("photo_url")),
            id_token=data.get("idToken") or base.get("id_token"),
            refresh_token=data.get("refreshToken") or base.get("refresh_token"),
        )

    async def _set_identity(self, identity: Optional[Identity]):
        self.current_identity = identity
        for callback in list(self._listeners):
            await callback(identity)

    # --- SUBSCRIPTION ---
    async def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """Delivers the current identity immediately, then every sign-in/sign-out."""
        self._listeners.append(callback)
        await callback(self.current_identity)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    async def reload(self):
        """Re-delivers the current identity so listeners re-resolve it."""
        await self._set_identity(self.current_identity)

    # --- SIGN IN / OUT ---
    async def create_account(self, email: str, password: str) -> Identity:
        data = await self._call("signUp", {"email": email, "password": password, "returnSecureToken": True})
        identity = self._identity_from(data)
        await self._set_identity(identity)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        data = await self._call("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True})
        identity = self._identity_from(data)
        await self._set_identity(identity)
        return identity

    async def sign_in_federated(self, id_token: str, provider_id: str = "google.com",
                                request_uri: str = "http://localhost") -> Identity:
        """Signs in with a credential already obtained from the federated provider (e.g. a Google ID token)."""
        data = await self._call("signInWithIdp", {
            "postBody": f"id_token={id_token}&providerId={provider_id}",
            "requestUri": request_uri,
            "returnSecureToken": True,
            "returnIdpCredential": True,
        })
        identity = self._identity_from(data)
        await self._set_identity(identity)
        return identity

    async def sign_out(self):
        await self._set_identity(None)

    # --- PROFILE ---
    async def _update(self, fields: dict) -> Identity:
        if self.current_identity is None:
            raise NotAuthenticated()
        data = await self._call("update", {"idToken": self.current_identity.id_token, "returnSecureToken": True, **fields})
        self.current_identity = self._identity_from(data, previous=self.current_identity)
        return self.current_identity

    async def update_display_name(self, display_name: str) -> Identity:
        return await self._update({"displayName": display_name})

    async def update_email(self, email: str) -> Identity:
        return await self._update({"email": email})

    async def update_password(self, password: str) -> Identity:
        return await self._update({"password": password})

    async def update_photo_url(self, photo_url: str) -> Identity:
        return await self._update({"photoUrl": photo_url})

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
