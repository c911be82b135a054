"""
Per-user analysis state machine.

One AnalysisSession owns what a user sees: Idle, Loading, Success or Failure.
Each submission gets a new token; completions carrying an older token are
dropped, so a late response from a superseded or reset cycle never shows up.
All transitions run on the event loop, no locking needed.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from .analyzer import analyze_csv
from .preview import PREVIEW_ROWS, split_preview
from .schemas import AnalysisResult, SessionState

logger = logging.getLogger(__name__)

READ_ERROR_MESSAGE = "Failed to read the file."
EMPTY_FILE_MESSAGE = "Could not read file content."
ANALYSIS_ERROR_MESSAGE = (
    "Failed to analyze the data. The AI model may be unavailable or the data format is unsupported."
)

Preview = List[List[str]]


@dataclass(frozen=True)
class UploadedFile:
    name: str
    content: bytes

    async def read_text(self) -> str:
        # Decoded off the event loop.
        return await asyncio.to_thread(self.content.decode, "utf-8-sig")


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Loading:
    file_name: str
    preview: Optional[Preview] = None


@dataclass(frozen=True)
class Success:
    file_name: str
    result: AnalysisResult
    preview: Preview


@dataclass(frozen=True)
class Failure:
    file_name: str
    message: str


State = Union[Idle, Loading, Success, Failure]


class AnalysisSession:
    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self.state: State = Idle()
        self._token = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def token(self) -> int:
        return self._token

    def submit(self, file: UploadedFile) -> asyncio.Task:
        """Start a new analysis cycle; must be called from a running event loop."""
        self._cancel_inflight()
        self._token += 1
        token = self._token
        self.state = Loading(file_name=file.name)
        logger.info(
            "session.submit session_id=%s token=%d file=%s bytes=%d",
            self.session_id,
            token,
            file.name,
            len(file.content),
        )
        self._task = asyncio.get_running_loop().create_task(self._run(token, file))
        return self._task

    def reset(self) -> None:
        self._cancel_inflight()
        self._token += 1
        self.state = Idle()
        logger.info("session.reset session_id=%s token=%d", self.session_id, self._token)

    async def wait(self) -> State:
        """Wait until the most recent cycle settles and return the state."""
        while True:
            task = self._task
            if task is None or task.done():
                return self.state
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # Superseded or reset while waiting: follow the newer cycle.
                if not task.cancelled():
                    raise

    def view(self) -> SessionState:
        state = self.state
        if isinstance(state, Loading):
            return SessionState(phase="loading", file_name=state.file_name, preview=state.preview)
        if isinstance(state, Success):
            return SessionState(
                phase="success",
                file_name=state.file_name,
                preview=state.preview,
                result=state.result,
            )
        if isinstance(state, Failure):
            return SessionState(phase="failure", file_name=state.file_name, error=state.message)
        return SessionState(phase="idle")

    # ---------- transitions ----------

    def _is_current(self, token: int, event: str) -> bool:
        if token == self._token and isinstance(self.state, Loading):
            return True
        logger.debug(
            "session.stale_completion session_id=%s event=%s token=%d current=%d",
            self.session_id,
            event,
            token,
            self._token,
        )
        return False

    async def on_text_ready(self, token: int, text: str) -> None:
        if not self._is_current(token, "text_ready"):
            return
        preview = split_preview(text, PREVIEW_ROWS)
        self.state = Loading(file_name=self.state.file_name, preview=preview)

        try:
            result = await analyze_csv(text)
        except Exception as e:
            self.on_analysis_failure(token, e)
            return
        self.on_analysis_success(token, result)

    def on_analysis_success(self, token: int, result: AnalysisResult) -> None:
        if not self._is_current(token, "analysis_success"):
            return
        self.state = Success(
            file_name=self.state.file_name,
            result=result,
            preview=self.state.preview or [],
        )
        logger.info("session.success session_id=%s token=%d", self.session_id, token)

    def on_analysis_failure(self, token: int, error: Exception) -> None:
        if not self._is_current(token, "analysis_failure"):
            return
        logger.error(
            "session.analysis_failed session_id=%s token=%d err=%s",
            self.session_id,
            token,
            error,
            exc_info=error,
        )
        self.state = Failure(file_name=self.state.file_name, message=ANALYSIS_ERROR_MESSAGE)

    def on_read_failure(self, token: int, message: str = READ_ERROR_MESSAGE) -> None:
        if not self._is_current(token, "read_failure"):
            return
        logger.warning("session.read_failed session_id=%s token=%d msg=%s", self.session_id, token, message)
        self.state = Failure(file_name=self.state.file_name, message=message)

    # ---------- internals ----------

    async def _run(self, token: int, file: UploadedFile) -> None:
        try:
            text = await file.read_text()
        except UnicodeDecodeError:
            logger.warning("session.decode_failed session_id=%s file=%s", self.session_id, file.name, exc_info=True)
            self.on_read_failure(token, READ_ERROR_MESSAGE)
            return
        if not text:
            self.on_read_failure(token, EMPTY_FILE_MESSAGE)
            return
        await self.on_text_ready(token, text)

    def _cancel_inflight(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class SessionRegistry:
    """
    Bounded store of sessions, least recently used first.

    Sessions idle for longer than `idle_ttl_s` expire, and the oldest ones are
    evicted once more than `max_sessions` are held. Dropped sessions are reset
    so an in-flight analysis is cancelled with them.
    """

    def __init__(
        self,
        max_sessions: int = 1000,
        idle_ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl_s = idle_ttl_s
        self._clock = clock
        self._sessions: "OrderedDict[str, Tuple[AnalysisSession, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: Optional[str]) -> Optional[AnalysisSession]:
        """Return a live session and mark it as used, or None."""
        self._expire()
        if not session_id or session_id not in self._sessions:
            return None
        session, _ = self._sessions.pop(session_id)
        self._sessions[session_id] = (session, self._clock())
        return session

    def get_or_create(self, session_id: str) -> AnalysisSession:
        session = self.get(session_id)
        if session is None:
            session = AnalysisSession(session_id)
            self._sessions[session_id] = (session, self._clock())
            logger.info("session.created session_id=%s live=%d", session_id, len(self._sessions))
            self._evict_overflow()
        return session

    def clear(self) -> None:
        for session, _ in self._sessions.values():
            session.reset()
        self._sessions.clear()

    def _expire(self) -> None:
        cutoff = self._clock() - self.idle_ttl_s
        while self._sessions:
            session_id, (session, last_used) = next(iter(self._sessions.items()))
            if last_used > cutoff:
                break
            self._drop(session_id, "expired")

    def _evict_overflow(self) -> None:
        while len(self._sessions) > max(1, self.max_sessions):
            self._drop(next(iter(self._sessions)), "evicted")

    def _drop(self, session_id: str, reason: str) -> None:
        session, _ = self._sessions.pop(session_id)
        session.reset()
        logger.info("session.%s session_id=%s", reason, session_id)
