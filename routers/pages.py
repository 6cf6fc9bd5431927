# routers/pages.py
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from db import SessionDep
from gate import DonorDep, NgoDep, SessionContextDep, VolunteerDep
from identity import SessionContext, dashboard_url
from moderation import create_message
from schemas import ContactCreate
from sync import load_dashboard

from .ui import FOOD_SOURCES

router = APIRouter(tags=["pages"])
templates = Jinja2Templates(directory="templates")


def _dashboard(request: Request, session, context: SessionContext, template: str):
    return templates.TemplateResponse(
        request,
        template,
        {
            "context": context,
            "lists": load_dashboard(session, context),
            "flash_message": None,
        },
    )


@router.get("/", response_class=HTMLResponse)
def landing(request: Request, context: SessionContextDep):
    # Signed-in users with a role go straight to their dashboard
    if context.is_authenticated and context.role is not None and not context.is_blocked:
        return RedirectResponse(url=dashboard_url(context.role), status_code=303)

    return templates.TemplateResponse(request, "index.html", {"context": context})


@router.get("/about", response_class=HTMLResponse)
def about(request: Request, context: SessionContextDep):
    return templates.TemplateResponse(request, "about.html", {"context": context})


@router.get("/contact", response_class=HTMLResponse)
def contact_page(request: Request, context: SessionContextDep):
    return templates.TemplateResponse(
        request,
        "contact.html",
        {"context": context, "form_data": {}, "error": None, "sent": False},
    )


@router.post("/contact", response_class=HTMLResponse)
async def contact_submit(request: Request, session: SessionDep, context: SessionContextDep):
    form = await request.form()
    form_data = {
        key: (form.get(key) or "").strip()
        for key in ("name", "email", "subject", "message")
    }

    try:
        message_in = ContactCreate(**form_data)
    except ValidationError:
        return templates.TemplateResponse(
            request,
            "contact.html",
            {
                "context": context,
                "form_data": form_data,
                "error": "Please fill in every field with a valid email address.",
                "sent": False,
            },
            status_code=400,
        )

    create_message(session, message_in)
    return templates.TemplateResponse(
        request,
        "contact.html",
        {"context": context, "form_data": {}, "error": None, "sent": True},
    )


@router.get("/donor/dashboard", response_class=HTMLResponse)
def donor_dashboard(request: Request, session: SessionDep, context: DonorDep):
    """Donor's history of posted donations with live status."""
    return _dashboard(request, session, context, "donor_dashboard.html")


@router.get("/donate", response_class=HTMLResponse)
def donate_page(request: Request, context: DonorDep):
    return templates.TemplateResponse(
        request,
        "donate.html",
        {
            "context": context,
            "form_data": {"city": context.profile.city if context.profile else ""},
            "errors": [],
            "flash_message": None,
            "food_sources": FOOD_SOURCES,
        },
    )


@router.get("/receiver/dashboard", response_class=HTMLResponse)
def receiver_dashboard(request: Request, session: SessionDep, context: NgoDep):
    """NGO view: pending donations to accept and the ones it already took."""
    return _dashboard(request, session, context, "receiver_dashboard.html")


@router.get("/volunteer/dashboard", response_class=HTMLResponse)
def volunteer_dashboard(request: Request, session: SessionDep, context: VolunteerDep):
    """Volunteer view: pickups to claim and deliveries in progress."""
    return _dashboard(request, session, context, "volunteer_dashboard.html")
