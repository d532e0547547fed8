import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import uuid4

from fastapi import FastAPI, Request

from bicochat.api.chats import router as chats_router
from bicochat.api.friends import router as friends_router
from bicochat.api.users import router as users_router
from bicochat.container import build_container
from bicochat.startup_self_check import run_startup_self_check

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):  # type: ignore[no-untyped-def]
    _app.state.startup_self_check = run_startup_self_check(
        logger=logger,
        store=_app.state.container.chat_store,
    )
    _app.state.started_at = datetime.now(UTC).isoformat()
    yield


app = FastAPI(title="BicoChat Store", version="0.1.0", lifespan=lifespan)
app.state.container = build_container()


@app.middleware("http")
async def attach_trace_id(request: Request, call_next):  # type: ignore[no-untyped-def]
    trace_id = request.headers.get("x-trace-id") or str(uuid4())
    request.state.trace_id = trace_id
    response = await call_next(request)
    response.headers["x-trace-id"] = trace_id
    return response


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok", "service": "bicochat-store"}


@app.get("/api/v1/ops/health")
def ops_health() -> dict[str, object]:
    startup = getattr(app.state, "startup_self_check", None)
    startup_payload = (
        {
            "user_count": startup.user_count,
            "chat_count": startup.chat_count,
            "fixture_issue_count": startup.fixture_issue_count,
            "persistence_enabled": startup.persistence_enabled,
            "persistence_ok": startup.persistence_ok,
            "issues": startup.issues,
        }
        if startup is not None
        else {
            "user_count": 0,
            "chat_count": 0,
            "fixture_issue_count": 0,
            "persistence_enabled": False,
            "persistence_ok": True,
            "issues": ["startup_self_check_not_available"],
        }
    )
    store_snapshot = app.state.container.chat_store.ops_snapshot()
    degraded = bool(startup_payload["issues"]) or not bool(
        store_snapshot["persistence"]["last_save_ok"]
    )
    return {
        "status": "degraded" if degraded else "ok",
        "service": "bicochat-store",
        "timestamp": datetime.now(UTC).isoformat(),
        "started_at": getattr(app.state, "started_at", None),
        "startup_self_check": startup_payload,
        "store": store_snapshot,
    }


app.include_router(users_router)
app.include_router(chats_router)
app.include_router(friends_router)
