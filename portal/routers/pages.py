"""
portal/routers/pages.py — Staff HTML pages
/staffAccess is the public login surface. /dashboard/* is protected by the
request gate (cookie session); handlers read the gate's resolved session.
"""

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

router = APIRouter()

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _render_dashboard(request: Request, section: str) -> HTMLResponse:
    session = getattr(request.state, "session", None)
    context = {
        "section": section,
        "username": session.username if session else None,
        "role": session.role.value if session and session.role else None,
    }
    return templates.TemplateResponse(request, "dashboard.html", context)


@router.get("/staffAccess", response_class=HTMLResponse)
async def staff_access(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "staff_access.html", {})


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard_home(request: Request) -> HTMLResponse:
    return _render_dashboard(request, "home")


@router.get("/dashboard/staff", response_class=HTMLResponse)
async def dashboard_staff(request: Request) -> HTMLResponse:
    return _render_dashboard(request, "staff")


@router.get("/dashboard/admin", response_class=HTMLResponse)
async def dashboard_admin(request: Request) -> HTMLResponse:
    return _render_dashboard(request, "admin")
