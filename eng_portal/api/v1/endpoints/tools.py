from fastapi import APIRouter, Depends, HTTPException

from eng_portal.api.deps import CurrentUser, get_store
from eng_portal.api.v1.endpoints.auth import require_role
from eng_portal.services.tools import get_tool, visible_tools

router = APIRouter()

@router.get("/")
async def list_tools(user: CurrentUser = Depends(require_role()), store=Depends(get_store)):
    """Tool catalog filtered to what the caller's role unlocks."""
    return {"role": user.role.value, **await visible_tools(store, user.role)}

@router.get("/{tool_id}")
async def read_tool(tool_id: str, user: CurrentUser = Depends(require_role()), store=Depends(get_store)):
    tool = await get_tool(store, tool_id, user.role)
    if tool is None:
        raise HTTPException(status_code=404, detail="Tool not found")
    return tool
