"""FastAPI server for the clinic outreach backend.

Run with:
    uv run uvicorn clinic_outreach.server:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from clinic_outreach.api.routes import router
from clinic_outreach.clock import Clock
from clinic_outreach.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, SHEETS_TABS
from clinic_outreach.models import CampaignKind
from clinic_outreach.scheduling.scheduler import CampaignConfig, ContactScheduler
from clinic_outreach.scheduling.windows import CallingWindow
from clinic_outreach.services.retell_client import RetellClient
from clinic_outreach.services.sheets_store import SheetsRecordStore

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def build_schedulers(
    dispatcher: RetellClient,
    clock: Clock,
) -> tuple[dict[CampaignKind, ContactScheduler], list[SheetsRecordStore]]:
    """One scheduler per campaign, each reading its own sheet tab."""
    window = CallingWindow.from_config()
    schedulers: dict[CampaignKind, ContactScheduler] = {}
    stores: list[SheetsRecordStore] = []
    for kind in CampaignKind:
        store = SheetsRecordStore(SHEETS_TABS[kind.value])
        stores.append(store)
        schedulers[kind] = ContactScheduler(
            CampaignConfig.for_kind(kind),
            store,
            dispatcher,
            clock=clock,
            window=window,
        )
    return schedulers, stores


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the HTTP clients and schedulers once and keep them in app state."""
    clock = Clock()
    dispatcher = RetellClient()
    schedulers, stores = build_schedulers(dispatcher, clock)
    application.state.clock = clock
    application.state.schedulers = schedulers
    logger.info("Schedulers ready: %s", ", ".join(k.value for k in schedulers))
    yield
    for store in stores:
        store.close()
    dispatcher.close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Clinic Outreach",
    description=(
        "Outbound birthday, reminder and follow-up calls for clinic "
        "patients, plus branch handoff for the inbound voice agent."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) to every request and its log lines."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Clinic Outreach",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting outreach API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "clinic_outreach.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )
