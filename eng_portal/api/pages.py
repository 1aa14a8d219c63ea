from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from eng_portal import config
from eng_portal.api.deps import CurrentUser
from eng_portal.api.v1.endpoints.auth import get_page_user
from eng_portal.core.guard import HOME_PATH, evaluate_route, redirect_target
from eng_portal.core.roles import Role

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

# path -> (template, title, required role). None = any signed-in user.
GUARDED_PAGES = {
    "/tools": ("page.html", "Tools", None),
    "/budgets": ("page.html", "Budgets", None),
    "/profile": ("page.html", "Profile", None),
    "/courses": ("page.html", "Courses", Role.E_MASTER),
    "/admin": ("page.html", "Admin Panel", Role.ADMIN),
}


def _context(user: Optional[CurrentUser], **extra) -> dict:
    return {
        "user": user.to_dict() if user else None,
        "firebase_config": config.frontend_config(),
        **extra,
    }


def _banned(request: Request, user: CurrentUser):
    return templates.TemplateResponse(request, "banned.html", _context(user), status_code=403)


def guarded_page(template: str, title: str, required_role: Optional[Role]):
    async def page(request: Request, user: Optional[CurrentUser] = Depends(get_page_user)):
        if user is not None and user.is_banned:
            return _banned(request, user)
        decision = evaluate_route(user.identity if user else None, user.role if user else None, required_role)
        target = redirect_target(decision)
        if target:
            return RedirectResponse(target, status_code=303)
        return templates.TemplateResponse(request, template, _context(user, title=title))
    return page


for path, (template, title, required_role) in GUARDED_PAGES.items():
    router.add_api_route(path, guarded_page(template, title, required_role), methods=["GET"], include_in_schema=False)


@router.get("/", include_in_schema=False)
async def home_page(request: Request, user: Optional[CurrentUser] = Depends(get_page_user)):
    if user is not None and user.is_banned:
        return _banned(request, user)
    return templates.TemplateResponse(request, "home.html", _context(user))


@router.get("/login", include_in_schema=False)
async def login_page(request: Request, user: Optional[CurrentUser] = Depends(get_page_user)):
    if user is not None:
        return RedirectResponse(HOME_PATH, status_code=303)
    return templates.TemplateResponse(request, "login.html", _context(None, mode="login"))


@router.get("/register", include_in_schema=False)
async def register_page(request: Request, user: Optional[CurrentUser] = Depends(get_page_user)):
    if user is not None:
        return RedirectResponse(HOME_PATH, status_code=303)
    return templates.TemplateResponse(request, "login.html", _context(None, mode="register"))
