import json
import logging
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

import lifecycle
from db import EngineDep, SessionDep
from errors import (
    DonationNotFound,
    GateRedirect,
    StoreError,
    TransitionConflict,
    VolunteerOffline,
)
from gate import HOME_URL, DonorDep, NgoDep, SignedInDep, VolunteerDep
from identity import SessionContext, verify_session_token
from moderation import set_active
from realtime import FeedDep
from schemas import DonationCreate
from sync import DashboardLists, DashboardSynchronizer, load_dashboard

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ui", tags=["ui"])
templates = Jinja2Templates(directory="templates")


FLASH_SUCCESS = "success"
FLASH_CONFLICT = "conflict"
FLASH_ERROR = "error"

FOOD_SOURCES = ("home", "restaurant", "event", "other")


def _refetch(session: Session, context: SessionContext) -> Optional[DashboardLists]:
    try:
        return load_dashboard(session, context)
    except StoreError:
        return None


def render_lists(
    request: Request,
    lists: Optional[DashboardLists],
    role: str,
    flash_message: Optional[dict] = None,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        f"fragments/{role}_lists.html",
        {"lists": lists, "flash_message": flash_message},
        status_code=status_code,
    )


def run_action(
    request: Request,
    session: Session,
    context: SessionContext,
    action: Callable[[], object],
    success_text: str,
) -> HTMLResponse:
    """Run one mutation, then re-render the caller's lists from the store.

    The response always carries freshly fetched lists, whether the action
    worked, lost a race or failed, so the button that fired it is usable again.
    """
    status_code = status.HTTP_200_OK
    try:
        action()
        flash_message = {"kind": FLASH_SUCCESS, "text": success_text}
    except TransitionConflict as exc:
        flash_message = {"kind": FLASH_CONFLICT, "text": str(exc)}
        status_code = status.HTTP_409_CONFLICT
    except DonationNotFound as exc:
        flash_message = {"kind": FLASH_CONFLICT, "text": str(exc)}
        status_code = status.HTTP_404_NOT_FOUND
    except VolunteerOffline as exc:
        flash_message = {"kind": FLASH_ERROR, "text": str(exc)}
        status_code = status.HTTP_403_FORBIDDEN
    except StoreError as exc:
        flash_message = {"kind": FLASH_ERROR, "text": str(exc)}
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    lists = _refetch(session, context)
    return render_lists(request, lists, context.role.value, flash_message, status_code)


@router.get("/lists", response_class=HTMLResponse)
def lists_fragment(request: Request, session: SessionDep, context: SignedInDep):
    if context.role is None:
        raise GateRedirect(HOME_URL)
    return render_lists(request, _refetch(session, context), context.role.value)


# --- donor ---

def _donate_form(
    request: Request,
    form_data: dict,
    errors: List[str],
    flash_message: Optional[dict] = None,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "fragments/donate_form.html",
        {
            "form_data": form_data,
            "errors": errors,
            "flash_message": flash_message,
            "food_sources": FOOD_SOURCES,
        },
        status_code=status_code,
    )


@router.get("/donor/donate-form", response_class=HTMLResponse)
def donor_donate_form(request: Request, context: DonorDep):
    form_data = {"city": context.profile.city if context.profile else ""}
    return _donate_form(request, form_data, [])


@router.post("/donor/donations", response_class=HTMLResponse)
async def donor_create_donation(
    request: Request,
    session: SessionDep,
    context: DonorDep,
):
    form = await request.form()
    form_data = {
        key: (form.get(key) or "").strip()
        for key in (
            "food_item",
            "quantity",
            "description",
            "city",
            "pickup_address",
            "food_source",
            "expiry_time",
        )
    }

    errors: List[str] = []

    for field, label in (
        ("food_item", "Food item"),
        ("quantity", "Quantity"),
        ("pickup_address", "Pickup address"),
        ("expiry_time", "Best before"),
    ):
        if not form_data[field]:
            errors.append(f"{label} is required.")

    quantity_value: Optional[int] = None
    if form_data["quantity"]:
        try:
            quantity_value = int(form_data["quantity"])
            if quantity_value < 1:
                errors.append("Quantity must be at least 1.")
        except ValueError:
            errors.append("Quantity must be a whole number of servings.")

    expiry_value: Optional[datetime] = None
    if form_data["expiry_time"]:
        try:
            expiry_value = datetime.fromisoformat(form_data["expiry_time"])
        except ValueError:
            errors.append("Best before must be a date and time.")

    food_source = form_data["food_source"] or "home"
    if food_source not in FOOD_SOURCES:
        errors.append("Unknown food source.")

    if errors:
        return _donate_form(request, form_data, errors, status_code=status.HTTP_400_BAD_REQUEST)

    donation_in = DonationCreate(
        food_item=form_data["food_item"],
        quantity=quantity_value or 1,
        description=form_data["description"],
        city=form_data["city"],
        pickup_address=form_data["pickup_address"],
        food_source=food_source,
        expiry_time=expiry_value,
    )

    try:
        lifecycle.create_donation(session, context.user_id, donation_in)
    except StoreError as exc:
        return _donate_form(
            request,
            form_data,
            [str(exc)],
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    response = _donate_form(
        request,
        {"city": form_data["city"]},
        [],
        {"kind": FLASH_SUCCESS, "text": "Donation posted! NGOs nearby can see it now."},
    )
    response.headers["HX-Trigger"] = json.dumps({"donations-refresh": True})
    return response


# --- ngo ---

@router.post("/ngo/donations/{donation_id}/accept", response_class=HTMLResponse)
def ngo_accept(donation_id: int, request: Request, session: SessionDep, context: NgoDep):
    return run_action(
        request,
        session,
        context,
        lambda: lifecycle.accept_donation(session, donation_id, context.user_id),
        "Donation accepted. A volunteer will pick it up.",
    )


# --- volunteer ---

@router.post("/volunteer/donations/{donation_id}/claim", response_class=HTMLResponse)
def volunteer_claim(donation_id: int, request: Request, session: SessionDep, context: VolunteerDep):
    return run_action(
        request,
        session,
        context,
        lambda: lifecycle.claim_donation(session, donation_id, context.user_id),
        "Pickup claimed. It is in your deliveries now.",
    )


@router.post("/volunteer/donations/{donation_id}/deliver", response_class=HTMLResponse)
def volunteer_deliver(donation_id: int, request: Request, session: SessionDep, context: VolunteerDep):
    return run_action(
        request,
        session,
        context,
        lambda: lifecycle.mark_delivered(session, donation_id, context.user_id),
        "Marked as delivered. Thank you!",
    )


@router.post("/volunteer/active", response_class=HTMLResponse)
async def volunteer_toggle_active(request: Request, session: SessionDep, context: VolunteerDep):
    form = await request.form()
    is_active = form.get("is_active") == "true"
    set_active(session, context.user_id, is_active)
    text = "You are online." if is_active else "You are offline. New pickups are hidden."
    return render_lists(
        request,
        _refetch(session, context),
        context.role.value,
        {"kind": FLASH_SUCCESS, "text": text},
    )


# --- live updates ---

def sse_message(event: str, data: str) -> str:
    lines = data.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


@router.get("/stream")
async def stream(
    request: Request,
    context: SignedInDep,
    feed: FeedDep,
    engine: EngineDep,
):
    """
    Server-sent events carrying the caller's re-rendered lists every time a
    watched table changes. Ends when the browser goes away, the session
    cookie stops being valid, or the gate would no longer let the user in.
    """
    if context.role is None:
        raise GateRedirect(HOME_URL)

    synchronizer = DashboardSynchronizer(context, feed, engine)
    template = templates.get_template(f"fragments/{context.role.value}_lists.html")
    token = request.cookies.get("session") or ""

    async def events():
        snapshots = synchronizer.snapshots()
        try:
            async for lists in snapshots:
                if await request.is_disconnected():
                    break
                if verify_session_token(token) != context.user_id:
                    break
                html = template.render(lists=lists, flash_message=None)
                yield sse_message("lists", html)
        finally:
            await snapshots.aclose()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
