"""FastAPI app — newsletter ingestion stream, repository, sources and personality API."""

import json
import logging
from datetime import date

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from config import settings
from ingest import ingest_newsletters, run_ingestion
from src.article_extractor import WebArticleExtractor
from src.content_parser import extract_sender_email
from src.database import Repository
from src.email_fetcher import GmailMailSource
from src.exceptions import DailyRepoError, PersonalityStateError
from src.models import RepositoryItem
from src.personality import advance_state, build_personality_brief, load_state, strip_moments_section

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

SUPPORTED_LOCALES = ("de", "en")

app = FastAPI(title="Daily Repo", description="Newsletter ingestion and repository")


# --- Collaborators (built per request) ---

def _repository() -> Repository:
    return Repository()


def _mail_source():
    """Mail source factory for the orchestrator; calling it raises ConfigurationError without credentials."""
    return GmailMailSource


def _extractor():
    return WebArticleExtractor()


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return ""


def _check_admin(request: Request) -> JSONResponse | None:
    """Return an error response unless the request carries the admin token."""
    if not settings.admin_token:
        return JSONResponse({"error": "ADMIN_TOKEN not configured on server."}, status_code=500)
    if _bearer_token(request) != settings.admin_token:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return None


def _item_to_dict(item: RepositoryItem) -> dict:
    return {
        "id": item.id,
        "sourceType": str(item.source_type),
        "title": item.title,
        "content": item.content,
        "sourceEmail": item.source_email,
        "sourceUrl": item.source_url,
        "ingestDate": item.ingest_date,
        "receivedAt": item.received_at.isoformat(),
        "externalMessageId": item.external_message_id,
    }


def _parse_target_date(value) -> date | None:
    """Accept YYYY-MM-DD; anything else falls back to the rolling window."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring invalid targetDate %r", value)
        return None


# --- Ingestion ---

@app.post("/api/fetch-newsletters-stream")
async def api_fetch_newsletters_stream(request: Request):
    """Run an ingestion and stream its progress as server-sent events."""
    denied = _check_admin(request)
    if denied:
        return denied

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = {}
    if not isinstance(body, dict):
        body = {}

    target_date = _parse_target_date(body.get("targetDate"))
    force = body.get("force") is True
    logger.info("Stream ingestion requested (targetDate=%s, force=%s)", target_date, force)

    async def event_stream():
        async for event in run_ingestion(
            _mail_source(), _extractor(), _repository(), target_date=target_date, force=force
        ):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.api_route("/api/cron/fetch-newsletters", methods=["GET", "POST"])
async def api_cron_fetch_newsletters(request: Request, secret: str = Query("")):
    """External cron trigger for a rolling-window ingestion.

    Accepts secret via query param or Authorization: Bearer header.
    """
    if not secret:
        secret = _bearer_token(request)

    if not settings.cron_secret:
        return JSONResponse({"error": "CRON_SECRET not configured on server."}, status_code=500)
    if secret != settings.cron_secret:
        return JSONResponse({"error": "Invalid secret."}, status_code=403)

    logger.info("Cron trigger: starting ingestion.")
    summary, events = await ingest_newsletters(_mail_source(), _extractor(), _repository())
    if summary is None:
        errors = [e.item.error for e in events if e.item and e.item.error]
        return JSONResponse({"status": "failed", "error": errors[-1] if errors else None}, status_code=500)
    return JSONResponse({"status": "ok", "summary": summary.to_dict()})


# --- Repository ---

@app.get("/api/repository")
async def api_repository(day: str = Query(default="", alias="date")):
    """List stored items, optionally for one day bucket."""
    if day:
        try:
            date.fromisoformat(day)
        except ValueError:
            return JSONResponse({"error": "date must be YYYY-MM-DD"}, status_code=400)
    items = _repository().list_items(ingest_date=day or None)
    return JSONResponse([_item_to_dict(i) for i in items])


# --- Sources ---

@app.get("/api/sources")
async def api_sources():
    """List registered newsletter sources."""
    return JSONResponse(_repository().list_sources())


@app.post("/api/sources")
async def api_add_source(request: Request):
    """Register or update a newsletter source."""
    denied = _check_admin(request)
    if denied:
        return denied
    body = await request.json()
    email = extract_sender_email(body.get("email") or "")
    if "@" not in email:
        return JSONResponse({"error": "A valid email is required."}, status_code=400)
    _repository().upsert_source(email, name=body.get("name", ""), enabled=body.get("enabled", True) is not False)
    return JSONResponse({"ok": True, "email": email})


@app.post("/api/excluded-senders")
async def api_exclude_sender(request: Request):
    """Hide a sender from future discovery scans."""
    denied = _check_admin(request)
    if denied:
        return denied
    body = await request.json()
    email = extract_sender_email(body.get("email") or "")
    if "@" not in email:
        return JSONResponse({"error": "A valid email is required."}, status_code=400)
    _repository().add_excluded_sender(email, reason=body.get("reason", ""))
    return JSONResponse({"ok": True, "email": email})


# --- Run log ---

@app.get("/api/runs")
async def api_runs():
    """List pipeline runs."""
    return JSONResponse(_repository().list_runs())


@app.get("/api/runs/{run_id}")
async def api_run(run_id: str):
    """Get a single pipeline run."""
    run = _repository().get_run(run_id)
    if not run:
        return JSONResponse({"error": "Run not found"}, status_code=404)
    return JSONResponse(run)


# --- Personality ---

@app.get("/api/personality")
async def api_personality_default():
    """Personality of the configured podcast locale."""
    return await api_personality(settings.personality_locale)


@app.get("/api/personality/{locale}")
async def api_personality(locale: str):
    """Current personality state and the brief injected into the script prompt."""
    if locale not in SUPPORTED_LOCALES:
        return JSONResponse({"error": f"Unsupported locale: {locale}"}, status_code=404)
    try:
        state = load_state(_repository(), locale)
    except PersonalityStateError as e:
        logger.error("Personality unavailable: %s", e)
        return JSONResponse({"error": str(e)}, status_code=500)
    return JSONResponse({"state": state.to_dict(), "brief": build_personality_brief(state)})


@app.post("/api/personality/{locale}/episodes")
async def api_personality_episode(locale: str, request: Request):
    """Record a generated episode script: evolve state and remember its moments."""
    denied = _check_admin(request)
    if denied:
        return denied
    if locale not in SUPPORTED_LOCALES:
        return JSONResponse({"error": f"Unsupported locale: {locale}"}, status_code=404)
    body = await request.json()
    text = body.get("text") or ""
    if not text.strip():
        return JSONResponse({"error": "Episode text is required."}, status_code=400)

    repository = _repository()
    try:
        state = advance_state(repository, load_state(repository, locale), text)
    except DailyRepoError as e:
        logger.error("Failed to advance personality: %s", e)
        return JSONResponse({"error": str(e)}, status_code=500)
    return JSONResponse({"state": state.to_dict(), "script": strip_moments_section(text)})


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "mailbox_configured": bool(settings.gmail_credentials_json),
        "labels": settings.label_list,
    }


def serve() -> None:
    """Run the API with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    serve()
