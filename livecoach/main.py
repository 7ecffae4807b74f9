"""FastAPI control surface for the live coaching session."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional, Set

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from livecoach.errors import CaptureError
from livecoach.media import list_audio_devices
from livecoach.session import CoachSession
from livecoach.state import JobContext, SessionContext

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0
LISTENER_QUEUE_SIZE = 256

# Global state
session: Optional[CoachSession] = None
_listeners: Set[asyncio.Queue] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if session is not None:
        await session.stop()


app = FastAPI(title="LiveCoach", lifespan=lifespan)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request models
class JobPayload(BaseModel):
    company_name: str = ""
    job_title: str = ""
    job_description: str = ""


class StartRequest(BaseModel):
    mode: Optional[Literal["call", "presential"]] = None
    engine: Optional[Literal["browser", "whisper", "realtime"]] = None
    language: Optional[str] = None
    provider: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    transcription_api_key: Optional[str] = None
    ai_mode: Optional[str] = None
    resume_summary: Optional[str] = None
    job: Optional[JobPayload] = None


def create_session(context: SessionContext) -> CoachSession:
    return CoachSession(context)


def _broadcast(message: dict) -> None:
    for queue in list(_listeners):
        if queue.full():
            # slow client; drop its oldest message
            queue.get_nowait()
        queue.put_nowait(message)


def _idle_status() -> dict:
    return {"is_running": False, "is_paused": False}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon to prevent 404 errors."""
    return Response(content="", media_type="image/x-icon")


@app.get("/audio/devices")
async def audio_devices():
    """List input devices for MIC_DEVICE / SYSTEM_AUDIO_DEVICE selection."""
    return list_audio_devices()


@app.post("/session/start")
async def session_start(body: Optional[StartRequest] = None):
    """Start capture, transcription and coaching with optional overrides."""
    global session

    body = body or StartRequest()
    overrides = body.model_dump(exclude={"job"})
    context = SessionContext.from_config(**overrides)
    if body.job is not None:
        context.job = JobContext(**body.job.model_dump())

    if session is not None:
        await session.stop()

    session = create_session(context)
    session.updates.subscribe(_broadcast)

    try:
        await session.start()
    except CaptureError as e:
        logger.error("Session start failed: %s", e.message)
        return JSONResponse(
            status_code=400,
            content={"status": "error", "error": e.user_message, "error_code": e.code},
        )

    return {"status": "started", "session": session.status()}


@app.post("/session/stop")
async def session_stop():
    if session is None:
        return {"status": "stopped", "session": _idle_status()}
    await session.stop()
    return {"status": "stopped", "session": session.status()}


@app.post("/session/mute")
async def session_mute():
    """Toggle the microphone. Capture keeps running."""
    if session is None:
        return {"muted": False}
    return {"muted": session.toggle_mute()}


@app.post("/session/pause")
async def session_pause():
    if session is not None:
        session.pause()
    return {"paused": bool(session and session.is_paused)}


@app.post("/session/resume")
async def session_resume():
    if session is not None:
        session.resume()
    return {"paused": bool(session and session.is_paused)}


@app.post("/coach/clear")
async def coach_clear():
    """Drop all tips and the current coaching error."""
    if session is not None:
        session.clear_tips()
    return {"status": "cleared"}


@app.get("/session/status")
async def session_status():
    """Full snapshot: status, transcript and tips."""
    if session is None:
        return _idle_status()
    return session.snapshot()


@app.get("/session/stream")
async def session_stream():
    """Stream session updates via Server-Sent Events."""

    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue(maxsize=LISTENER_QUEUE_SIZE)
        _listeners.add(queue)
        try:
            first = {"type": "status", "status": session.status() if session else _idle_status()}
            yield f"data: {json.dumps(first)}\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    # Send heartbeat to keep connection alive
                    yield ": heartbeat\n\n"
                    continue
                yield f"data: {json.dumps(message)}\n\n"
        finally:
            _listeners.discard(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering for nginx
        },
    )
