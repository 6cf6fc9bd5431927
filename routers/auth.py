import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from config import settings
from db import SessionDep
from errors import IdentityError
from gate import SessionContextDep, SignedInDep
from identity import create_session_token, dashboard_url, resolve_context, sign_in, sign_up
from schemas import SignInData, SignUpData

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])
templates = Jinja2Templates(directory="templates")


def _wants_json(request: Request) -> bool:
    return request.headers.get("content-type", "").startswith("application/json")


async def _payload(request: Request) -> dict:
    if _wants_json(request):
        return await request.json()
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=settings.SESSION_MAX_AGE,
    )


def _auth_form(request: Request, mode: str, error: str, form_data: dict, status_code: int):
    return templates.TemplateResponse(
        request,
        "auth.html",
        {
            "context": None,
            "mode": mode,
            "error": error,
            "form_data": {k: v for k, v in form_data.items() if k != "password"},
        },
        status_code=status_code,
    )


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or "input"
    return f"{field}: {first.get('msg', 'invalid value')}"


@router.get("/auth", response_class=HTMLResponse)
def auth_page(request: Request, context: SessionContextDep, mode: str = "signin"):
    if context.is_authenticated:
        return RedirectResponse(url=dashboard_url(context.role), status_code=303)

    return templates.TemplateResponse(
        request,
        "auth.html",
        {
            "context": None,
            "mode": "signup" if mode == "signup" else "signin",
            "error": None,
            "form_data": {},
        },
    )


@router.post("/auth/signup")
async def signup(request: Request, session: SessionDep):
    """
    Create an account, profile and role in one go and sign the user in.
    Accepts either JSON (API) or form-data (from the HTML form).
    """
    data = await _payload(request)

    try:
        payload = SignUpData(**data)
        user = sign_up(session, payload)
    except (IdentityError, ValidationError) as exc:
        detail = _validation_message(exc) if isinstance(exc, ValidationError) else str(exc)
        if _wants_json(request):
            raise HTTPException(status_code=400, detail=detail)
        return _auth_form(request, "signup", detail, data, 400)

    token = create_session_token(user.id)
    context = resolve_context(session, token)
    target = dashboard_url(context.role)

    if _wants_json(request):
        resp = JSONResponse(
            {"message": "Account created", "role": context.role.value, "redirect": target}
        )
    else:
        resp = RedirectResponse(url=target, status_code=303)
    _set_session_cookie(resp, token)
    return resp


@router.post("/auth/signin")
async def signin(request: Request, session: SessionDep):
    """
    Sign in with email + password. The role comes from the store, never
    from the request.
    """
    data = await _payload(request)

    try:
        payload = SignInData(**data)
        user = sign_in(session, payload)
    except (IdentityError, ValidationError) as exc:
        detail = _validation_message(exc) if isinstance(exc, ValidationError) else str(exc)
        if _wants_json(request):
            raise HTTPException(status_code=400, detail=detail)
        return _auth_form(request, "signin", detail, data, 400)

    token = create_session_token(user.id)
    context = resolve_context(session, token)
    target = dashboard_url(context.role)
    logger.info("user %s signed in", user.id)

    if _wants_json(request):
        resp = JSONResponse(
            {
                "message": "Welcome back!",
                "role": context.role.value if context.role else None,
                "redirect": target,
            }
        )
    else:
        resp = RedirectResponse(url=target, status_code=303)
    _set_session_cookie(resp, token)
    return resp


@router.post("/auth/signout")
def signout():
    """
    Clear the session cookie and go home. There is nothing remote to fail,
    so this always succeeds.
    """
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie("session")
    return response


@router.get("/me")
def read_me(context: SignedInDep):
    """
    The resolved session context of the current user.
    """
    return {
        "user_id": context.user_id,
        "email": context.email,
        "role": context.role.value if context.role else None,
        "profile": context.profile.model_dump() if context.profile else None,
    }
