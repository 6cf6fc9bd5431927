import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

import lifecycle
from db import SessionDep
from gate import AdminDep
from models import Role
from moderation import list_users, resolve_message, set_blocked
from sync import load_dashboard

from .ui import FLASH_ERROR, FLASH_SUCCESS, render_lists, run_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
templates = Jinja2Templates(directory="templates")


def _role_filter(role: Optional[str]) -> Optional[Role]:
    if not role or role == "all":
        return None
    try:
        return Role(role)
    except ValueError:
        return None


@router.get("", response_class=HTMLResponse)
def admin_page(request: Request, session: SessionDep, context: AdminDep):
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "context": context,
            "lists": load_dashboard(session, context),
            "flash_message": None,
        },
    )


@router.get("/users", response_class=HTMLResponse)
def users_fragment(
    request: Request,
    session: SessionDep,
    context: AdminDep,
    q: Optional[str] = None,
    role: Optional[str] = None,
):
    """User table filtered by a name/email search and a role."""
    users = list_users(session, search=(q or "").strip() or None, role=_role_filter(role))
    return templates.TemplateResponse(
        request,
        "fragments/admin_users.html",
        {"users": users, "q": q or "", "role": role or "all"},
    )


def _set_blocked(request: Request, session, context, user_id: int, blocked: bool):
    if user_id == context.user_id:
        return render_lists(
            request,
            load_dashboard(session, context),
            Role.admin.value,
            {"kind": FLASH_ERROR, "text": "You cannot block yourself."},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    profile = set_blocked(session, user_id, blocked)
    if profile is None:
        flash_message = {"kind": FLASH_ERROR, "text": "User not found."}
        status_code = status.HTTP_404_NOT_FOUND
    else:
        logger.info("admin %s %s user %s", context.user_id, "blocked" if blocked else "unblocked", user_id)
        verb = "blocked" if blocked else "unblocked"
        flash_message = {"kind": FLASH_SUCCESS, "text": f"{profile.full_name} {verb}."}
        status_code = status.HTTP_200_OK
    return render_lists(
        request, load_dashboard(session, context), Role.admin.value, flash_message, status_code
    )


@router.post("/users/{user_id}/block", response_class=HTMLResponse)
def block_user(user_id: int, request: Request, session: SessionDep, context: AdminDep):
    return _set_blocked(request, session, context, user_id, blocked=True)


@router.post("/users/{user_id}/unblock", response_class=HTMLResponse)
def unblock_user(user_id: int, request: Request, session: SessionDep, context: AdminDep):
    return _set_blocked(request, session, context, user_id, blocked=False)


@router.post("/donations/{donation_id}/delete", response_class=HTMLResponse)
def delete_donation(donation_id: int, request: Request, session: SessionDep, context: AdminDep):
    return run_action(
        request,
        session,
        context,
        lambda: lifecycle.delete_donation(session, donation_id),
        "Donation removed.",
    )


@router.post("/messages/{message_id}/resolve", response_class=HTMLResponse)
def resolve_contact_message(message_id: int, request: Request, session: SessionDep, context: AdminDep):
    message = resolve_message(session, message_id)
    if message is None:
        flash_message = {"kind": FLASH_ERROR, "text": "Message not found."}
        status_code = status.HTTP_404_NOT_FOUND
    else:
        flash_message = {"kind": FLASH_SUCCESS, "text": f"Marked \"{message.subject}\" as resolved."}
        status_code = status.HTTP_200_OK
    return render_lists(
        request, load_dashboard(session, context), Role.admin.value, flash_message, status_code
    )
