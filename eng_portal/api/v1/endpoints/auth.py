import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, EmailStr, Field

from eng_portal import config
from eng_portal.api.deps import CurrentUser, get_blob_store, get_entitlements
from eng_portal.auth.admin import AdminIdentityUpdater, create_session_cookie, verify_id_token, verify_session_cookie
from eng_portal.core.errors import NotAuthenticated, StorageUnavailable
from eng_portal.core.guard import GuardDecision, evaluate_route
from eng_portal.core.roles import Role
from eng_portal.services.session import PhotoUpload, apply_profile_update

logger = logging.getLogger("engportal.auth")

router = APIRouter()

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp"]

# --- MODELS ---

class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)

class RedeemRequest(BaseModel):
    code: str

class SessionRequest(BaseModel):
    id_token: str

# --- DEPENDENCIES ---
async def get_current_user(authorization: Optional[str] = Header(None), entitlements=Depends(get_entitlements)) -> CurrentUser:
    """
    Verifies the Firebase Bearer Token and resolves the caller's entitlements
    (first-sight bootstrap and expiration check included).
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid header format")

    identity = verify_id_token(authorization.split("Bearer ", 1)[1])
    resolution = await entitlements.resolve(identity)
    return CurrentUser.from_resolution(identity, resolution)


async def get_page_user(request: Request, entitlements=Depends(get_entitlements)) -> Optional[CurrentUser]:
    """Same resolution for server-rendered pages, from the session cookie. None when signed out."""
    cookie = request.cookies.get(config.SESSION_COOKIE_NAME)
    if not cookie:
        return None
    try:
        identity = verify_session_cookie(cookie)
    except NotAuthenticated:
        return None
    try:
        resolution = await entitlements.resolve(identity)
    except StorageUnavailable as e:
        # Fail closed: signed in, no entitlements.
        logger.error(f"Resolution failed for {identity.uid}: {e}")
        return CurrentUser(identity=identity, record=None, role=None, status=None)
    return CurrentUser.from_resolution(identity, resolution)


def require_role(required_role: Role = Role.E_BASIC):
    """Route guard for the API: 403 when the caller's effective role is below required_role."""
    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if evaluate_route(user.identity, user.role, required_role) != GuardDecision.RENDER:
            detail = "Your account is blocked." if user.is_banned else "Access denied"
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return user
    return dependency

# --- ROUTES ---

@router.get("/me")
async def read_users_me(current_user: CurrentUser = Depends(get_current_user)):
    """Returns the caller's profile, resolved role and status. Works for banned users too."""
    return current_user.to_dict()

@router.put("/me")
async def update_profile(data: ProfileUpdate, current_user: CurrentUser = Depends(get_current_user),
                         entitlements=Depends(get_entitlements), blobs=Depends(get_blob_store)):
    """Updates the profile: Firebase Auth first, then the user record."""
    fields = {"displayName": data.display_name, "email": data.email, "password": data.password}
    written = await apply_profile_update(
        AdminIdentityUpdater(current_user.uid), entitlements, blobs, current_user.identity, fields,
    )
    if not written and not data.password:
        return {"message": "No changes requested"}
    return {"message": "Profile updated successfully"}

@router.post("/me/avatar")
async def upload_avatar(file: UploadFile = File(...), current_user: CurrentUser = Depends(get_current_user),
                        entitlements=Depends(get_entitlements), blobs=Depends(get_blob_store)):
    """Allows any logged-in user to upload an avatar."""
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Only images allowed")

    photo = PhotoUpload(filename=file.filename, content=await file.read(), content_type=file.content_type)
    written = await apply_profile_update(
        AdminIdentityUpdater(current_user.uid), entitlements, blobs, current_user.identity, {}, photo,
    )
    return {"url": written["photoURL"]}

@router.post("/me/redeem")
async def redeem_code(data: RedeemRequest, current_user: CurrentUser = Depends(require_role()),
                      entitlements=Depends(get_entitlements)):
    """Redeems a bonus code. The client re-reads /me afterwards to pick up the new role."""
    grant = await entitlements.redeem(data.code, current_user.uid)
    return {
        "role": grant.role.value,
        "durationDays": grant.duration_days,
        "roleExpiresAt": grant.expires_at.isoformat(),
        "message": f"You are now {grant.role.value} for {grant.duration_days} days!",
    }

@router.post("/session")
async def create_session(data: SessionRequest, response: Response):
    """Exchanges a Firebase ID token for the session cookie used by the pages."""
    cookie = create_session_cookie(data.id_token)
    response.set_cookie(
        config.SESSION_COOKIE_NAME, cookie,
        max_age=config.SESSION_COOKIE_DAYS * 24 * 3600,
        httponly=True, secure=True, samesite="lax",
    )
    return {"status": "success"}

@router.delete("/session")
async def end_session(response: Response):
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return {"status": "signed_out"}
