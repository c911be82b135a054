"""
FastAPI entrypoint: the upload -> analyze -> dashboard page and its JSON twin.

- Each browser session (cookie or x-session-id header) owns one AnalysisSession,
  created on first upload and kept in a bounded, idle-expiring registry
- HTML routes redirect back to "/" after every transition (post/redirect/get)
- JSON routes expose the same state machine for scripts and tests
- A missing Gemini credential stops the app at startup
"""

import os
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (optional).
# Some editors save .env as UTF-16; support both UTF-8 and UTF-16.
_dotenv_path = find_dotenv(usecwd=True) or None
if _dotenv_path:
    try:
        load_dotenv(_dotenv_path)
    except UnicodeError:
        load_dotenv(_dotenv_path, encoding="utf-16")

# Configure logging with environment-based level
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from . import config
from .render import render_page
from .schemas import SessionState
from .session import AnalysisSession, Idle, SessionRegistry, UploadedFile

SESSION_COOKIE = "session_id"

_SESSIONS = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing credential stops startup here.
    config.require_api_key()
    logger.info("Support Intelligence Hub starting model=%s LOG_LEVEL=%s", config.get_model_name(), LOG_LEVEL)
    _SESSIONS.max_sessions = config.get_max_sessions()
    _SESSIONS.idle_ttl_s = config.get_session_idle_ttl()
    yield
    _SESSIONS.clear()


app = FastAPI(title="Support Intelligence Hub", lifespan=lifespan)


def _session_id(request: Request) -> Optional[str]:
    return request.headers.get("x-session-id") or request.cookies.get(SESSION_COOKIE)


def _find_session(request: Request) -> Optional[AnalysisSession]:
    """Existing session for this caller; never creates one."""
    return _SESSIONS.get(_session_id(request))


def _get_session(request: Request) -> AnalysisSession:
    """Session for a caller about to change state; created on first upload."""
    return _SESSIONS.get_or_create(_session_id(request) or uuid.uuid4().hex)


def _with_cookie(response: Response, session: AnalysisSession) -> Response:
    response.set_cookie(SESSION_COOKIE, session.session_id, httponly=True, samesite="lax")
    return response


async def _read_upload(file: UploadFile) -> UploadedFile:
    """Read an uploaded file into memory, enforcing the size limit."""
    max_bytes = config.get_max_file_size_bytes()
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.",
        )
    return UploadedFile(name=file.filename or "uploaded.csv", content=content)


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    session = _find_session(request)
    if session is None:
        return HTMLResponse(render_page(Idle()))
    return _with_cookie(HTMLResponse(render_page(session.state)), session)


@app.post("/upload")
async def upload(request: Request, file: UploadFile = File(...)):
    uploaded = await _read_upload(file)
    session = _get_session(request)
    logger.info("upload.request session_id=%s file=%s bytes=%d", session.session_id, uploaded.name, len(uploaded.content))
    session.submit(uploaded)
    return _with_cookie(RedirectResponse("/", status_code=303), session)


@app.post("/reset")
async def reset(request: Request):
    session = _find_session(request)
    if session is None:
        return RedirectResponse("/", status_code=303)
    session.reset()
    return _with_cookie(RedirectResponse("/", status_code=303), session)


@app.get("/api/state", response_model=SessionState)
async def api_state(request: Request, response: Response):
    session = _find_session(request)
    if session is None:
        return SessionState(phase="idle")
    _with_cookie(response, session)
    return session.view()


@app.post("/api/analyze", response_model=SessionState)
async def api_analyze(request: Request, response: Response, file: UploadFile = File(...)):
    uploaded = await _read_upload(file)
    session = _get_session(request)
    _with_cookie(response, session)
    logger.info(
        "analyze.request session_id=%s file=%s bytes=%d",
        session.session_id,
        uploaded.name,
        len(uploaded.content),
    )
    session.submit(uploaded)
    await session.wait()
    view = session.view()
    logger.info("analyze.response session_id=%s phase=%s", session.session_id, view.phase)
    return view


@app.post("/api/reset", response_model=SessionState)
async def api_reset(request: Request, response: Response):
    session = _find_session(request)
    if session is None:
        return SessionState(phase="idle")
    _with_cookie(response, session)
    session.reset()
    return session.view()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "insight_hub.main:app",
        host=os.getenv("SERVER_HOST", "127.0.0.1"),
        port=int(os.getenv("SERVER_PORT", "8000")),
    )
