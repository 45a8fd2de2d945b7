# routers/pages.py
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from db import SessionDep
from models import DONATION_TRANSITIONS
from policy import Action, is_allowed
from schemas import MAX_DONATION_IMAGES, DonationFilters
from .auth import OptionalUserDep
from .donations import list_donation_views
from .ngos import list_ngo_views
from .users import find_users

router = APIRouter(tags=["pages"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

DASHBOARDS = {
    "donor": "/donor/dashboard",
    "ngo": "/ngo/dashboard",
    "admin": "/admin/dashboard",
}


def _statuses_leading_to(target: str) -> str:
    return " ".join(
        sorted(status for status, targets in DONATION_TRANSITIONS.items() if target in targets)
    )


# Status changes offered to donors: (target, button label, statuses it applies to)
DONOR_STEPS = [
    (target, label, _statuses_leading_to(target))
    for target, label in (
        ("cancelled", "Cancel"),
        ("processing", "Mark processing"),
        ("shipping", "Mark shipping"),
        ("delivered", "Mark delivered"),
    )
]


def _home() -> RedirectResponse:
    return RedirectResponse(url="/", status_code=303)


@router.get("/", response_class=HTMLResponse)
def index(request: Request, current: OptionalUserDep):
    # If signed in, go straight to the matching dashboard
    if current is not None and current.type in DASHBOARDS:
        return RedirectResponse(url=DASHBOARDS[current.type], status_code=303)

    return templates.TemplateResponse(request, "index.html", {"current_user": None})


@router.get("/register", response_class=HTMLResponse)
def register_page(request: Request, current: OptionalUserDep):
    if current is not None and current.type in DASHBOARDS:
        return RedirectResponse(url=DASHBOARDS[current.type], status_code=303)

    return templates.TemplateResponse(request, "register.html", {"current_user": None})


@router.get("/donor/dashboard", response_class=HTMLResponse)
def donor_dashboard(request: Request, session: SessionDep, current: OptionalUserDep):
    """Donor dashboard: the donor's own donations."""
    if current is None or current.type != "donor":
        return _home()

    donations = list_donation_views(session, DonationFilters(donor_id=current.id))
    return templates.TemplateResponse(
        request,
        "donor_dashboard.html",
        {
            "current_user": current,
            "donations": donations,
            "actions": "_donor_actions.html",
            "steps": DONOR_STEPS,
        },
    )


@router.get("/donor/donate", response_class=HTMLResponse)
def donate_page(request: Request, current: OptionalUserDep):
    """Form for listing a new donation, with image upload."""
    if current is None or current.type != "donor":
        return _home()

    return templates.TemplateResponse(
        request,
        "donate.html",
        {
            "current_user": current,
            "can_donate": is_allowed(current, Action.CREATE_DONATION),
            "max_images": MAX_DONATION_IMAGES,
        },
    )


@router.get("/ngo/dashboard", response_class=HTMLResponse)
def ngo_dashboard(
    request: Request,
    session: SessionDep,
    current: OptionalUserDep,
    category: Optional[str] = None,
    conditions: Optional[str] = None,
):
    """NGO dashboard: available donations and the NGO's claims."""
    if current is None or current.type != "ngo":
        return _home()

    available = list_donation_views(
        session,
        DonationFilters(category=category or None, conditions=conditions or None, status="pending"),
    )
    claimed = list_donation_views(session, DonationFilters(ngo_id=current.id))
    return templates.TemplateResponse(
        request,
        "ngo_dashboard.html",
        {
            "current_user": current,
            "available": available,
            "claimed": claimed,
            "can_claim": is_allowed(current, Action.CLAIM_DONATION),
            "category": category or "",
            "conditions": conditions or "",
        },
    )


@router.get("/admin/dashboard", response_class=HTMLResponse)
def admin_dashboard(request: Request, session: SessionDep, current: OptionalUserDep):
    """Admin dashboard: donors, NGOs awaiting approval and all donations."""
    if current is None or current.type != "admin":
        return _home()

    return templates.TemplateResponse(
        request,
        "admin_dashboard.html",
        {
            "current_user": current,
            "donors": find_users(session, type="donor"),
            "ngos": list_ngo_views(session),
            "donations": list_donation_views(session, DonationFilters()),
        },
    )
