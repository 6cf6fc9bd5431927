"""Role gate in front of every protected page, fragment and API call."""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Cookie, Depends, Request, Response
from fastapi.responses import RedirectResponse

from db import SessionDep
from errors import GateLoading, GateRedirect
from identity import SessionContext, SessionState, resolve_context
from models import Role

SIGN_IN_URL = "/auth"
HOME_URL = "/"


class GateDecision(str, Enum):
    loading = "loading"
    sign_in = "sign_in"
    home = "home"
    render = "render"


def decide(context: SessionContext, required_role: Optional[Role] = None) -> GateDecision:
    if context.state is SessionState.loading:
        return GateDecision.loading
    if context.state is SessionState.anonymous:
        return GateDecision.sign_in
    if required_role is not None and context.role is not required_role:
        return GateDecision.home
    if context.is_blocked:
        return GateDecision.home
    return GateDecision.render


def get_session_context(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
) -> SessionContext:
    return resolve_context(session, session_token)


SessionContextDep = Annotated[SessionContext, Depends(get_session_context)]


def require_role(role: Optional[Role] = None):
    """Dependency factory: pass the request through only if ``decide`` says render."""

    def gate(context: SessionContextDep) -> SessionContext:
        decision = decide(context, role)
        if decision is GateDecision.render:
            return context
        if decision is GateDecision.loading:
            raise GateLoading()
        raise GateRedirect(SIGN_IN_URL if decision is GateDecision.sign_in else HOME_URL)

    return gate


SignedInDep = Annotated[SessionContext, Depends(require_role())]
DonorDep = Annotated[SessionContext, Depends(require_role(Role.donor))]
NgoDep = Annotated[SessionContext, Depends(require_role(Role.ngo))]
VolunteerDep = Annotated[SessionContext, Depends(require_role(Role.volunteer))]
AdminDep = Annotated[SessionContext, Depends(require_role(Role.admin))]


def redirect_response(request: Request, url: str) -> Response:
    """303 for normal navigation; htmx requests get told to navigate instead."""
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers={"HX-Redirect": url})
    return RedirectResponse(url=url, status_code=303)
