"""FastAPI entry point for the training business application."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from ptdesk import __version__
from ptdesk.database import init_db
from ptdesk.routers import (
    auth,
    clients,
    commission,
    dashboard,
    locations,
    package_types,
    payments,
    profiles,
    sessions,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Starting PT Desk %s", __version__)
    init_db()
    yield


app = FastAPI(title="PT Desk", version=__version__, lifespan=lifespan)

app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(locations.router)
app.include_router(package_types.router)
app.include_router(clients.router)
app.include_router(payments.router)
app.include_router(sessions.router)
app.include_router(profiles.router)
app.include_router(commission.router)


@app.get("/")
def root() -> RedirectResponse:
    return RedirectResponse(url="/login")


@app.get("/health")
def health() -> Response:
    """Simple health endpoint for load balancers and platform checks."""
    return Response(content='{"status":"ok"}', media_type="application/json")


@app.exception_handler(HTTPException)
async def http_exception_redirect_login(request: Request, exc: HTTPException):
    """Redirect 401 HTML page requests to /login; preserve JSON for API calls."""
    if exc.status_code != status.HTTP_401_UNAUTHORIZED:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    accept = request.headers.get("accept", "")
    if "text/html" in accept:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        return RedirectResponse(url=f"/login?next={quote(target, safe='')}", status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
