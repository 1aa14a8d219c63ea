import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from eng_portal import config
from eng_portal.core.errors import PortalError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("engportal")

# Import Routers
from eng_portal.api import pages
from eng_portal.api.v1.endpoints import admin, auth, notifications, tools

app = FastAPI(
    title="Engineering Portal",
    description="Accounts, role entitlements, tool catalog and back-office"
)

# --- 1. SECURITY & MIDDLEWARE ---

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# CSP: Prevent XSS attacks by restricting script sources
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline' https://cdn.tailwindcss.com https://www.gstatic.com https://apis.google.com; "
            "connect-src 'self' https://identitytoolkit.googleapis.com https://securetoken.googleapis.com; "
            "frame-src https://*.firebaseapp.com https://accounts.google.com; "
            "img-src 'self' data: https:; "
            "style-src 'self' 'unsafe-inline';"
        )
        return response

app.add_middleware(SecurityHeadersMiddleware)

# --- 2. ERRORS ---
# Domain errors reach the client verbatim; each is scoped to the request that raised it.
@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": type(exc).__name__})

# --- 3. API ROUTES ---
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(tools.router, prefix="/api/v1/tools", tags=["Tools"])

@app.get("/api/v1/config")
async def get_frontend_config():
    """Returns public Firebase config from environment variables."""
    return config.frontend_config()

@app.get("/health")
async def health():
    return {"status": "online"}

# --- 4. FRONTEND ROUTES ---
app.include_router(pages.router, tags=["Pages"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
