import logging
import sys

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from db import create_db_and_tables
from errors import GateLoading, GateRedirect, StoreError
from gate import redirect_response
from routers import admin, auth, donations, pages, ui, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FoodBridge")


templates = Jinja2Templates(directory="templates")
app.mount("/static", StaticFiles(directory="static"), name="static")


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()
    logger.info("FoodBridge ready (database: %s)", settings.DATABASE_URL.split("://")[0])


@app.exception_handler(GateRedirect)
async def gate_redirect_handler(request: Request, exc: GateRedirect):
    # Authorization failures are never reported, only redirected
    return redirect_response(request, exc.url)


@app.exception_handler(GateLoading)
async def gate_loading_handler(request: Request, exc: GateLoading):
    return templates.TemplateResponse(request, "loading.html", {"context": None})


def _store_failure(request: Request) -> HTMLResponse | JSONResponse:
    text = "Something went wrong talking to the database. Please try again."
    if request.headers.get("HX-Request"):
        return HTMLResponse(f'<div class="flash flash-error">{text}</div>', status_code=503)
    return JSONResponse({"detail": text}, status_code=503)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return _store_failure(request)


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("unhandled store error on %s %s: %s", request.method, request.url.path, exc)
    return _store_failure(request)


app.include_router(pages.router)
app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(donations.router, prefix="/donations")
app.include_router(ui.router)
app.include_router(admin.router)
