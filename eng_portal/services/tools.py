import logging
from typing import List, Optional

from eng_portal.core.roles import Role, parse_role, satisfies

logger = logging.getLogger("engportal.tools")

TOOLS = "tools"
CATEGORIES = "toolCategories"


def required_role(tool_id: str, data: dict) -> Optional[Role]:
    """The tool's requiredRole, E-BASIC when unset, None when the label is unreadable."""
    label = data.get("requiredRole")
    if not label:
        return Role.E_BASIC
    try:
        return parse_role(label)
    except ValueError:
        logger.warning(f"Tool {tool_id} has unknown requiredRole {label!r}; hidden")
        return None


def _unlocked(tool_id: str, data: dict, role: Optional[Role]) -> Optional[Role]:
    required = required_role(tool_id, data)
    if required is None or not satisfies(role, required):
        return None
    return required


async def visible_tools(store, role: Optional[Role]) -> dict:
    """
    The catalog as the given role sees it: tools whose requiredRole the role satisfies,
    grouped by category. Tools without a requiredRole are open to every signed-in role;
    tools with an unrecognised one are open to nobody.
    """
    if role is None:
        return {"categories": [], "uncategorized": []}

    categories = {cid: {"id": cid, "name": data.get("name"), "tools": []}
                  for cid, data in store.query(CATEGORIES, order_by="name")}
    uncategorized: List[dict] = []

    for tool_id, data in store.query(TOOLS):
        required = _unlocked(tool_id, data, role)
        if required is None:
            continue
        tool = {
            "id": tool_id,
            "name": data.get("name"),
            "description": data.get("description"),
            "icon": data.get("icon", "wrench"),
            "requiredRole": required.value,
        }
        category = categories.get(data.get("categoryId"))
        if category is not None:
            category["tools"].append(tool)
        else:
            uncategorized.append(tool)

    return {
        "categories": [c for c in categories.values() if c["tools"]],
        "uncategorized": sorted(uncategorized, key=lambda t: (Role(t["requiredRole"]).rank, t["name"] or "")),
    }


async def get_tool(store, tool_id: str, role: Optional[Role]) -> Optional[dict]:
    """A single tool with its HTML body, or None when missing, unreadable or above the role."""
    data = store.get(TOOLS, tool_id)
    if data is None or _unlocked(tool_id, data, role) is None:
        return None
    return {"id": tool_id, **data}
