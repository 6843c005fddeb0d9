from __future__ import annotations

import logging
import sqlite3

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from . import auth, events, invitation, judge
from .config import configure_logging
from .db import init_db
from .judge import page

logger = logging.getLogger(__name__)

app = FastAPI(title="Event Judging")

app.include_router(auth.router)
app.include_router(events.router)
app.include_router(judge.router)
app.include_router(invitation.router)


@app.on_event("startup")
def _startup():
    configure_logging()
    init_db()


@app.exception_handler(sqlite3.IntegrityError)
def integrity_error(request: Request, exc: sqlite3.IntegrityError):
    # constraints are the only integrity check; report them, never retry
    message = str(exc)
    status = 409 if message.startswith("UNIQUE") else 400
    logger.warning("Rejected write to %s: %s", request.url.path, message)
    return JSONResponse({"detail": message}, status_code=status)


# -----------------------
# Routes: Home
# -----------------------
@app.get("/", response_class=HTMLResponse)
def home():
    return page(
        "Event Judging",
        """
        <div class="card">
          <p class="muted">
            Organizers manage events, categories, teams and judges through the JSON API
            (see <a href="/docs">/docs</a>). Judges open the link from their invitation.
          </p>
          <p class="muted">
            Round 1 scores are normalized per judge; each judge's top teams go to the finals,
            where every judge scores every finalist and the final ranking is computed.
          </p>
        </div>
        """,
    )
