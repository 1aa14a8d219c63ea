import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from eng_portal.api.deps import CurrentUser, get_entitlements, get_store
from eng_portal.api.v1.endpoints.auth import require_role
from eng_portal.core.roles import Role, UserStatus
from eng_portal.models.notification import AUDIENCE_ALL
from eng_portal.services.audit import log_activity, recent_activity
from eng_portal.services.notifications import send_notification

# Setup Logging
logger = logging.getLogger("engportal.admin")
router = APIRouter()

require_admin = require_role(Role.ADMIN)

# --- MODELS ---

class UserEntitlementUpdate(BaseModel):
    role: Role
    status: UserStatus
    role_expires_at: Optional[datetime] = Field(default=None, alias="roleExpiresAt")

class BonusCodeCreate(BaseModel):
    role: Role = Role.E_MASTER
    duration_days: int = Field(default=7, gt=0, alias="durationDays")
    uses: int = Field(default=1, gt=0)
    code: Optional[str] = None

class NotificationCreate(BaseModel):
    message: str = Field(min_length=1)
    title: Optional[str] = None
    audience: str = AUDIENCE_ALL

# --- 1. AUDIT LOGS ---
@router.get("/audit-logs")
async def get_audit_logs(limit: int = 50, admin: CurrentUser = Depends(require_admin), store=Depends(get_store)):
    """Fetches system activity logs."""
    return await recent_activity(store, limit)

# --- 2. USER MANAGEMENT (Role + Status + Expiration) ---
@router.get("/users")
async def list_users(search: Optional[str] = Query(None), admin: CurrentUser = Depends(require_admin),
                     entitlements=Depends(get_entitlements)):
    return [u.public_dict() for u in await entitlements.list_users(search)]

@router.put("/users/{uid}")
async def update_user(uid: str, payload: UserEntitlementUpdate, admin: CurrentUser = Depends(require_admin),
                      store=Depends(get_store), entitlements=Depends(get_entitlements)):
    """Direct overwrite of role, status and role expiration. A null expiration means permanent."""
    if await entitlements.get_record(uid) is None:
        raise HTTPException(status_code=404, detail="User not found")

    record = await entitlements.admin_update(uid, payload.role, payload.status, payload.role_expires_at)
    expiry = payload.role_expires_at.isoformat() if payload.role_expires_at else "never"
    await log_activity(store, admin.email, "UPDATE_USER", uid,
                       f"role={payload.role.value} status={payload.status.value} expires={expiry}")
    return record.public_dict()

@router.post("/users/{uid}/ban")
async def ban_user(uid: str, admin: CurrentUser = Depends(require_admin),
                   store=Depends(get_store), entitlements=Depends(get_entitlements)):
    try:
        record = await entitlements.ban(uid)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")

    await log_activity(store, admin.email, "BAN_USER", uid, "Banned user")
    return {"message": f"{record.display_name or record.email or uid} was banned."}

# --- 3. BONUS CODES ---
@router.get("/bonus-codes")
async def list_bonus_codes(admin: CurrentUser = Depends(require_admin), entitlements=Depends(get_entitlements)):
    return [c.public_dict() for c in await entitlements.list_codes()]

@router.post("/bonus-codes")
async def create_bonus_code(payload: BonusCodeCreate, admin: CurrentUser = Depends(require_admin),
                            store=Depends(get_store), entitlements=Depends(get_entitlements)):
    try:
        code = await entitlements.create_code(payload.role, payload.duration_days, payload.uses, payload.code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await log_activity(store, admin.email, "CREATE_BONUS_CODE", code.id,
                       f"{code.code}: {code.role.value} x{code.uses_left} for {code.duration_days}d")
    return code.public_dict()

@router.delete("/bonus-codes/{code_id}")
async def delete_bonus_code(code_id: str, admin: CurrentUser = Depends(require_admin),
                            store=Depends(get_store), entitlements=Depends(get_entitlements)):
    await entitlements.delete_code(code_id)
    await log_activity(store, admin.email, "DELETE_BONUS_CODE", code_id, "Deleted bonus code")
    return {"message": "Code deleted"}

# --- 4. NOTIFICATIONS ---
@router.post("/notifications")
async def broadcast_notification(payload: NotificationCreate, admin: CurrentUser = Depends(require_admin),
                                 store=Depends(get_store)):
    """Sends to one user (uid), every holder of a role, or 'all'."""
    notification_id = await send_notification(store, payload.message, payload.audience, payload.title)
    await log_activity(store, admin.email, "SEND_NOTIFICATION", notification_id, f"audience={payload.audience}")
    return {"id": notification_id, "message": "Notification sent"}
