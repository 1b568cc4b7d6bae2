"""
FastAPI application — the lawline entry point.

Endpoints:
  POST   /api/fetchAi                 chat turn, streamed as SSE
  POST   /api/getChats                conversations of a signed-in user
  DELETE /api/chats/{chat_id}         delete one of them
  GET    /api/stats/weekly-queries    questions asked since Monday
  GET    /api/stats                   storage counters
  GET    /api/health                  liveness
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from lawline import __version__
from lawline.backends import BaseBackend, make_backend
from lawline.config import get_config, model_override
from lawline.errors import RelayError
from lawline.relay import ChatRelay
from lawline.stats import WeeklyUsageReporter
from lawline.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
sqlite_store: SQLiteStore | None = None
backend: BaseBackend | None = None
relay: ChatRelay | None = None
reporter: WeeklyUsageReporter | None = None


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global sqlite_store, backend, relay, reporter

    cfg = get_config()
    _setup_logging(cfg)

    sqlite_store = SQLiteStore(cfg["storage"]["sqlite_path"])
    backend = make_backend(cfg)
    relay = ChatRelay(sqlite_store, backend, cfg)
    reporter = WeeklyUsageReporter(sqlite_store)

    if not cfg.get("provider", {}).get("api_key"):
        logger.warning("provider.api_key is empty, completions will be rejected upstream")

    logger.info(
        "lawline %s started — listening on %s:%s, provider %s (%s)",
        __version__,
        cfg["server"]["host"],
        cfg["server"]["port"],
        backend.url,
        backend.default_model,
    )
    logger.info("Storage: SQLite=%s", cfg["storage"]["sqlite_path"])

    yield

    logger.info("lawline shutting down")


app = FastAPI(title="lawline", version=__version__, lifespan=lifespan)


async def _read_json(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.post("/api/fetchAi")
async def fetch_ai(request: Request):
    """
    Relay one chat turn. Errors found before streaming get a JSON body;
    errors during streaming break the stream.
    """
    body = await _read_json(request)
    if body is None:
        return JSONResponse({"error": "invalid JSON"}, status_code=400)

    try:
        turn = await relay.accept(body, request.headers)
        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            **turn.headers,
        }
        return StreamingResponse(relay.stream(turn), media_type="text/event-stream", headers=headers)
    except RelayError as e:
        logger.info("Rejected chat request: %s (%d)", e.message, e.status_code)
        return JSONResponse(e.to_dict(), status_code=e.status_code)
    except Exception:
        logger.exception("Error in fetchAi")
        return JSONResponse({"error": "Failed to process request"}, status_code=500)


@app.post("/api/getChats")
async def get_chats(request: Request):
    """List a signed-in user's conversations, most recent first."""
    body = await _read_json(request)
    if body is None:
        return JSONResponse({"error": "invalid JSON"}, status_code=400)

    username = body.get("username")
    if not username:
        return JSONResponse({"error": "Username is required"}, status_code=400)

    account = sqlite_store.find_account(username)
    if account is None:
        return JSONResponse({"error": "User not found"}, status_code=404)

    chats = [c.to_dict() for c in sqlite_store.list_conversations(account.id)]
    return JSONResponse({"chats": chats})


@app.delete("/api/chats/{chat_id}")
async def delete_chat(chat_id: str, username: str):
    account = sqlite_store.find_account(username)
    if account is None:
        return JSONResponse({"error": "User not found"}, status_code=404)

    conv = sqlite_store.get_conversation(chat_id)
    if conv is None or conv.owner_id != account.id:
        return JSONResponse({"error": "Chat not found"}, status_code=404)

    sqlite_store.delete_conversation(chat_id)
    logger.info("Deleted conversation %s for %s", chat_id, account.username)
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@app.get("/api/stats/weekly-queries")
async def weekly_queries():
    """Number of questions asked since Monday 00:00 local time."""
    try:
        count = reporter.weekly_count()
    except Exception:
        logger.exception("Error fetching weekly query count")
        return JSONResponse({"error": "Failed to fetch query statistics"}, status_code=500)
    return JSONResponse({"count": count})


@app.get("/api/stats")
async def stats():
    """Return storage counters."""
    return JSONResponse(sqlite_store.get_stats() if sqlite_store else {})


@app.get("/api/health")
async def health():
    """Health check."""
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "provider": backend.name if backend else "",
        "model": model_override() or (backend.default_model if backend else ""),
    })
