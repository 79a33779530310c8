"""
Interview Coach: FastAPI Server

================================================================================
Architecture:
  • One AnalysisPipeline per WebSocket connection (PipelineRegistry)
  • Demo mode: synthetic readings, no camera, no models
  • Live mode: the browser pushes JPEG frames + PCM16 audio over the socket
    into a PushedMediaSource (or a local OpenCV camera when
    COACH_MEDIA_SOURCE=camera); MediaPipe landmarks + numpy voice heuristics
    turn them into snapshots on the pipeline's own cadence
  • Snapshots, 5 s deltas, alerts and status streamed back as JSON
================================================================================

Endpoints:
  WS  /ws/analysis          — real-time analysis stream
  GET /health               — server health
  GET /sessions             — active sessions with status
  GET /session/{session_id} — single session status (or its final summary)

Client → Server messages:
  { type: "start", demo?: bool }                 → start analysis
  { type: "stop" }                               → stop, summary follows
  { type: "toggle_demo", enabled: bool }         → applies on next start
  { type: "frame", data: "<base64 jpeg>" }       → latest camera frame
  { type: "audio", data: "<base64 pcm16>", sample_rate: int }
  { type: "transcript", text: "..." }            → recognised speech
  { type: "track_ended", kind: "video"|"audio" } → a media track stopped
  { type: "media_denied", reason?: "..." }       → getUserMedia refused
  { type: "media_granted" }                      → permission restored
  { type: "ping" }                               → keepalive

Server → Client messages:
  { type: "session_started", data: {...} }
  { type: "snapshot", data: {...} }
  { type: "delta", data: {...} }
  { type: "alerts", data: { alerts: [...], suggestions: [...] } }
  { type: "status", data: {...} }
  { type: "demo_mode", data: { enabled, applied } }
  { type: "session_stopped", data: {...summary} }
  { type: "error", message: "...", code: "..." }
  { type: "pong" }
"""

from __future__ import annotations

import json
import logging
import pathlib
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import model_cfg, server_cfg
from .core.errors import ExtractorInitError, MediaPermissionError, SessionStateError
from .core.interfaces import FeatureExtractor, MediaConstraints, MediaSource
from .core.models import DeltaRecord, MetricsSnapshot
from .processing.extractors import MediaPipeExtractor
from .processing.media import CameraSource, PushedMediaSource
from .processing.summary import SessionSummary
from .services.registry import PipelineRegistry

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("coach")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ---------------------------------------------------------------------------
# Pipeline Registry
# ---------------------------------------------------------------------------

registry = PipelineRegistry()


def make_extractor() -> FeatureExtractor:
    """Models load lazily on the first live start, not here."""
    return MediaPipeExtractor(model_cfg)


def make_media_source() -> MediaSource:
    if server_cfg.media_source == "camera":
        return CameraSource()
    return PushedMediaSource()


def models_present() -> bool:
    return all(
        pathlib.Path(p).exists() for p in (model_cfg.pose_model_path, model_cfg.face_model_path)
    )


# ---------------------------------------------------------------------------
# FastAPI Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Interview Coach backend starting...")
    logger.info(f"   MediaPipe models present: {models_present()}")
    yield
    logger.info("Shutting down, closing all sessions...")
    await registry.close_all()
    logger.info("Interview Coach backend stopped")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Interview Coach: Real-Time Analysis",
    version=VERSION,
    description=(
        "Samples a candidate's camera and microphone during a mock interview, "
        "derives posture, emotion and voice scores, and streams rolling deltas "
        "and coaching tips back to the browser."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# REST Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "version": VERSION,
        "models_present": models_present(),
        "media_source": server_cfg.media_source,
        "demo_available": True,
        "active_sessions": registry.active_count,
    }


@app.get("/sessions")
async def list_sessions():
    return {sid: pipeline.status() for sid, pipeline in registry.all_pipelines.items()}


@app.get("/session/{session_id}")
async def session_detail(session_id: str):
    pipeline = registry.get(session_id)
    if pipeline is not None:
        detail = pipeline.status()
        if pipeline.latest_snapshot is not None:
            detail["latest_snapshot"] = pipeline.latest_snapshot.to_dict()
        detail["alerts"] = pipeline.alerts
        detail["suggestions"] = pipeline.suggestions
        return detail
    summary = registry.finished_summary(session_id)
    if summary is not None:
        return {"session_id": session_id, "state": "closed", "summary": summary}
    return JSONResponse(status_code=404, content={"error": "session not found"})


# ---------------------------------------------------------------------------
# WebSocket: Per-Session Analysis Stream
# ---------------------------------------------------------------------------

@app.websocket("/ws/analysis")
async def websocket_analysis(ws: WebSocket):
    """One AnalysisPipeline per connection, closed when the socket goes away."""
    await ws.accept()

    session_id = uuid.uuid4().hex[:12]
    media = make_media_source()
    # Browser-pushed media only; a local camera ignores frame/audio messages
    pushed = media if isinstance(media, PushedMediaSource) else None

    # Helper to send JSON safely
    async def send(data: Dict[str, Any]) -> None:
        try:
            await ws.send_text(json.dumps(data))
        except Exception:
            pass

    # Pipeline callbacks
    async def on_snapshot(snapshot: MetricsSnapshot) -> None:
        await send({"type": "snapshot", "data": snapshot.to_dict()})

    async def on_delta(record: DeltaRecord) -> None:
        await send({"type": "delta", "data": record.to_dict()})

    async def on_alerts(payload: Dict[str, Any]) -> None:
        await send({"type": "alerts", "data": payload})

    async def on_status(status: Dict[str, Any]) -> None:
        await send({"type": "status", "data": status})

    async def on_error(error: Dict[str, Any]) -> None:
        await send({"type": "error", "message": error["message"], "code": error["error"], "fatal": True})

    async def on_summary(summary: SessionSummary) -> None:
        data = summary.to_dict()
        registry.record_summary(session_id, data)
        await send({"type": "session_stopped", "data": data})

    pipeline = registry.create(
        session_id=session_id,
        demo_mode=True,
        extractor=make_extractor(),
        media_source=media,
        constraints=MediaConstraints(device_index=server_cfg.camera_index),
        on_snapshot=on_snapshot,
        on_delta=on_delta,
        on_alerts=on_alerts,
        on_status=on_status,
        on_error=on_error,
        on_summary=on_summary,
    )

    try:
        while True:
            raw = await ws.receive_text()

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type", "")

            # ── Start ──
            if msg_type == "start":
                if "demo" in message:
                    pipeline.toggle_demo_mode(bool(message["demo"]))
                try:
                    info = await pipeline.start()
                    await send({"type": "session_started", "data": info})
                except SessionStateError as e:
                    await send({"type": "error", "message": str(e), "code": "session_active"})
                except ExtractorInitError as e:
                    await send({
                        "type": "error",
                        "message": f"Live analysis unavailable: {str(e)[:200]}",
                        "code": "extractor_init",
                        "demo_available": True,
                    })
                except MediaPermissionError as e:
                    await send({
                        "type": "error",
                        "message": f"Camera/microphone unavailable: {str(e)[:200]}",
                        "code": "permission_denied",
                    })

            # ── Stop ──
            elif msg_type == "stop":
                summary = await pipeline.stop()
                if summary is None:
                    # Nothing was running; on_summary did not fire
                    await send({"type": "session_stopped", "data": {"session_id": session_id}})

            elif msg_type == "toggle_demo":
                enabled = bool(message.get("enabled", True))
                applied = pipeline.toggle_demo_mode(enabled)
                await send({"type": "demo_mode", "data": {"enabled": enabled, "applied": applied}})

            # ── Media pushed from the browser ──
            elif msg_type == "frame":
                if pushed is not None and pushed.stream is not None:
                    pushed.stream.push_frame(message.get("data", ""))

            elif msg_type == "audio":
                if pushed is not None and pushed.stream is not None:
                    try:
                        sample_rate = int(message.get("sample_rate", 0))
                    except (TypeError, ValueError):
                        continue
                    pushed.stream.push_audio(message.get("data", ""), sample_rate)

            elif msg_type == "track_ended":
                if pushed is not None and pushed.stream is not None:
                    pushed.stream.end_track(str(message.get("kind", "")))

            elif msg_type == "media_denied":
                if pushed is not None:
                    pushed.deny(str(message.get("reason") or "Permission denied"))

            elif msg_type == "media_granted":
                if pushed is not None:
                    pushed.allow()

            elif msg_type == "transcript":
                text = str(message.get("text", "")).strip()
                if text:
                    await pipeline.record_transcript(text)

            # ── Keepalive ──
            elif msg_type == "ping":
                await send({"type": "pong"})

            else:
                await send({"type": "error", "message": f"Unknown message type: {msg_type!r}", "code": "bad_message"})

    except WebSocketDisconnect:
        logger.info(f"[{session_id}] WebSocket disconnected")
    except Exception as e:
        logger.error(f"[{session_id}] WebSocket error: {e}", exc_info=True)
    finally:
        await registry.close(session_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn
    uvicorn.run(
        "interview_coach.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
