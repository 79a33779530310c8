"""
Interview Coach: Analysis Pipeline (session clock & lifecycle controller)

================================================================================
ONE PIPELINE PER INTERVIEW SESSION, NO GLOBAL MUTABLE STATE
================================================================================

A running pipeline owns:
  • One sampler (demo or live) and, in live mode, the stream handle
  • A fast timer    (100 ms demo, ~15 fps live) → one tick at a time
  • A slow timer    (5 s) → closes a delta window
  • A status timer  (1 s, only when an on_status listener is registered)
  • Per-session telemetry, tick health and latency milestones

Tick flow:
  fast timer → _on_fast_tick() ──(tick in flight? drop)──▶ _run_tick()
      sampler.tick() → derive() → snapshot → delta tracker observes
                                          → alerts / suggestions recomputed
                                          → on_snapshot / on_alerts

Every exit path (stop(), a fatal MediaStreamError inside a tick, close(),
`async with` exit) goes through stop(), which cancels every timer and the
in-flight tick and releases the stream.  Each start bumps a generation
counter; a tick that resolves after stop() sees a stale generation and
applies nothing.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import numpy as np

from ..core.config import AlertConfig, SamplerConfig, alert_cfg, sampler_cfg
from ..core.errors import CoachError, DetectionError, MediaStreamError, SessionStateError
from ..core.health import TickHealth
from ..core.interfaces import (
    FeatureExtractor,
    MediaConstraints,
    MediaSource,
    Scheduler,
    StreamHandle,
    TimerHandle,
)
from ..core.latency import LatencyTracer
from ..core.models import (
    DeltaRecord,
    MetricsSnapshot,
    RawFrameData,
    SessionClock,
    SessionCounters,
    SessionTelemetry,
)
from ..core.state_machine import LifecycleState, LifecycleStateMachine
from ..core.timers import AsyncioScheduler
from ..processing.alerts import AlertGenerator, build_suggestions
from ..processing.audio import count_fillers, count_words
from ..processing.delta import DeltaTracker
from ..processing.derivation import derive
from ..processing.sampler import DemoSampler, LiveSampler
from ..processing.summary import SessionSummary, SessionSummaryBuilder

logger = logging.getLogger("coach.pipeline")

Listener = Optional[Callable[[Any], Any]]


class AnalysisPipeline:
    """
    Usage:
        async with AnalysisPipeline(demo_mode=True, on_snapshot=render) as p:
            await p.start()
            ...
            summary = await p.stop()
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        demo_mode: bool = True,
        extractor: Optional[FeatureExtractor] = None,
        media_source: Optional[MediaSource] = None,
        scheduler: Optional[Scheduler] = None,
        constraints: MediaConstraints = MediaConstraints(),
        rng: Optional[np.random.Generator] = None,
        cfg: SamplerConfig = sampler_cfg,
        alerts: AlertConfig = alert_cfg,
        on_snapshot: Listener = None,
        on_delta: Listener = None,
        on_alerts: Listener = None,
        on_status: Listener = None,
        on_error: Listener = None,
        on_summary: Listener = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._label = f"[{self.session_id}] "
        self._demo_mode = demo_mode
        self._pending_demo_mode: Optional[bool] = None

        self._extractor = extractor
        self._media_source = media_source
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._constraints = constraints
        self._rng = rng
        self._cfg = cfg

        self._on_snapshot = on_snapshot
        self._on_delta = on_delta
        self._on_alerts = on_alerts
        self._on_status = on_status
        self._on_error = on_error
        self._on_summary = on_summary

        self.telemetry = SessionTelemetry(session_id=self.session_id, demo_mode=demo_mode)
        self._machine = LifecycleStateMachine(on_transition=self._on_transition, label=self._label)
        self._health = TickHealth(cfg.stale_after, label=self._label)
        self._latency = LatencyTracer(self.session_id)
        self._tracker = DeltaTracker(cfg.delta_window, label=self._label)
        self._alert_gen = AlertGenerator(alerts)
        self._summary = SessionSummaryBuilder()

        self._sampler: Optional[Union[DemoSampler, LiveSampler]] = None
        self._handle: Optional[StreamHandle] = None
        self._timers: List[TimerHandle] = []
        self._tick_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._started_at: Optional[float] = None

        self._latest_snapshot: Optional[MetricsSnapshot] = None
        self._latest_delta: Optional[DeltaRecord] = None
        self._alerts: List[str] = []
        self._suggestions: List[str] = []
        self._speech_history: Deque[float] = deque(maxlen=cfg.speech_history_size)
        self._counters = SessionCounters()
        self._last_summary: Optional[SessionSummary] = None

        logger.info(f"{self._label}Pipeline created (demo_mode={demo_mode})")

    # ── Observable state ───────────────────────────────────────────────

    @property
    def state(self) -> LifecycleState:
        return self._machine.state

    @property
    def demo_mode(self) -> bool:
        return self._demo_mode

    @property
    def latest_snapshot(self) -> Optional[MetricsSnapshot]:
        return self._latest_snapshot

    @property
    def latest_delta(self) -> Optional[DeltaRecord]:
        return self._latest_delta

    @property
    def alerts(self) -> List[str]:
        return list(self._alerts)

    @property
    def suggestions(self) -> List[str]:
        return list(self._suggestions)

    @property
    def speech_history(self) -> List[float]:
        return list(self._speech_history)

    @property
    def counters(self) -> SessionCounters:
        return self._counters

    @property
    def last_summary(self) -> Optional[SessionSummary]:
        return self._last_summary

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if t.active)

    @property
    def clock(self) -> SessionClock:
        if self.state is not LifecycleState.RUNNING or self._started_at is None:
            return SessionClock()
        return SessionClock(running=True, elapsed_seconds=max(0.0, self._scheduler.time() - self._started_at))

    @property
    def is_stale(self) -> bool:
        if self.state is not LifecycleState.RUNNING:
            return False
        return self._health.is_stale(self._scheduler.time())

    def status(self) -> Dict[str, Any]:
        running = self.state is LifecycleState.RUNNING
        now = self._scheduler.time() if running else None
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "demo_mode": self._demo_mode,
            "pending_demo_mode": self._pending_demo_mode,
            "clock": self.clock.to_dict(),
            "stale": self.is_stale,
            "health": self._health.diagnostics(now) if now is not None else None,
            "active_timers": self.active_timers,
            "media_tracks": self._handle.active_tracks if self._handle is not None else [],
            "counters": self._counters.to_dict(),
            "speech_history": self.speech_history,
            "telemetry": self.telemetry.to_dict(),
            "latency": self._latency.summary(),
        }

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> Dict[str, Any]:
        """
        Acquire what the mode needs and start the timers.

        Raises SessionStateError when not stopped.  ExtractorInitError and
        MediaPermissionError leave the pipeline STOPPED with nothing held
        and are re-raised to the caller.
        """
        if self.state is not LifecycleState.STOPPED:
            raise SessionStateError(f"Cannot start while {self.state.value}")

        if self._pending_demo_mode is not None:
            self._demo_mode = self._pending_demo_mode
            self._pending_demo_mode = None
            self.telemetry.demo_mode = self._demo_mode

        mode = "demo" if self._demo_mode else "live"
        self._machine.transition(LifecycleState.STARTING, f"start ({mode})")
        self._generation += 1
        generation = self._generation
        self._reset_session_state()

        now = self._scheduler.time()
        self._latency.mark("start_requested", now)

        try:
            if self._demo_mode:
                self._sampler = DemoSampler(rng=self._rng, word_probability=self._cfg.demo_word_probability)
            else:
                if self._extractor is None or self._media_source is None:
                    raise SessionStateError("Live mode needs a feature extractor and a media source")
                self._extractor.initialize()
                handle = await self._media_source.acquire(self._constraints)
                if generation != self._generation:
                    # stop() ran while we were waiting on the device
                    await self._media_source.release(handle)
                    logger.info(f"{self._label}Start abandoned, released late media handle")
                    return {"session_id": self.session_id, "mode": mode, "state": self.state.value}
                self._handle = handle
                self._latency.mark("media_acquired", self._scheduler.time())
                self._sampler = LiveSampler(handle, self._extractor, self._cfg)
        except BaseException as e:
            if generation == self._generation:
                await self._release_media()
                self._sampler = None
                self.telemetry.fatal_errors += 1
                self._machine.transition(LifecycleState.STOPPED, f"start failed: {type(e).__name__}")
            logger.error(f"{self._label}Start failed: {e}")
            raise

        interval = self._cfg.demo_tick_interval if self._demo_mode else self._cfg.live_tick_interval
        self._started_at = self._scheduler.time()
        self._timers.append(
            self._scheduler.call_every(interval, self._on_fast_tick, name=f"tick-{self.session_id}")
        )
        self._timers.append(
            self._scheduler.call_every(self._cfg.delta_window, self._on_delta_tick, name=f"delta-{self.session_id}")
        )
        if self._on_status is not None:
            self._timers.append(
                self._scheduler.call_every(self._cfg.status_interval, self._on_status_tick, name=f"status-{self.session_id}")
            )

        self._machine.transition(LifecycleState.RUNNING, f"{mode} timers started")
        return {
            "session_id": self.session_id,
            "mode": mode,
            "state": self.state.value,
            "tick_interval_ms": round(interval * 1000, 1),
            "delta_window_s": self._cfg.delta_window,
        }

    async def stop(self, reason: str = "stop requested") -> Optional[SessionSummary]:
        """Idempotent.  Returns the session summary, or None if nothing was running."""
        if self.state in (LifecycleState.STOPPED, LifecycleState.STOPPING):
            return None

        was_running = self.state is LifecycleState.RUNNING
        self._machine.transition(LifecycleState.STOPPING, reason)
        self._generation += 1

        duration = 0.0
        if self._started_at is not None:
            duration = self._scheduler.time() - self._started_at

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        # A cancel aimed at the caller is re-raised once teardown has finished
        interrupted: Optional[asyncio.CancelledError] = None
        task, self._tick_task = self._tick_task, None
        # A fatal tick calls stop() from inside itself; never cancel ourselves
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError as e:
                interrupted = e
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.debug(f"{self._label}In-flight tick ended with {task.exception()!r}")

        await self._release_media()
        if self._sampler is not None:
            self._sampler.reset()
            self._sampler = None
        self._tracker.reset()
        self._started_at = None

        summary: Optional[SessionSummary] = None
        if was_running:
            summary = self._summary.build(
                session_id=self.session_id,
                demo_mode=self._demo_mode,
                duration_seconds=duration,
                counters=self._counters,
                telemetry=self.telemetry.to_dict(),
                latency=self._latency.summary(),
            )
            self._last_summary = summary

        self._machine.transition(LifecycleState.STOPPED, reason)
        logger.info(f"{self._label}Session stopped: {self.telemetry.to_dict()}")

        if interrupted is not None:
            raise interrupted
        if summary is not None:
            await self._emit(self._on_summary, summary)
        return summary

    async def close(self) -> None:
        """Full teardown: stop, then release the models."""
        await self.stop("closed")
        if self._extractor is not None:
            # close() waits for inference still running on the model thread
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._extractor.close)
        logger.info(f"{self._label}Pipeline closed")

    async def __aenter__(self) -> "AnalysisPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def toggle_demo_mode(self, enabled: bool) -> bool:
        """Returns True if applied now, False if deferred to the next start."""
        if self.state is LifecycleState.STOPPED:
            self._demo_mode = enabled
            self._pending_demo_mode = None
            self.telemetry.demo_mode = enabled
            logger.info(f"{self._label}Demo mode {'on' if enabled else 'off'}")
            return True
        self._pending_demo_mode = enabled
        logger.info(
            f"{self._label}Demo mode {'on' if enabled else 'off'} requested while "
            f"{self.state.value}; applies on next start"
        )
        return False

    async def record_transcript(self, text: str) -> SessionCounters:
        """Append recognised speech, count fillers and refresh the alerts.  Ignored unless running."""
        if self.state is not LifecycleState.RUNNING:
            logger.debug(f"{self._label}Transcript ignored while {self.state.value}")
            return self._counters
        self._append_speech(text)
        if self._latest_snapshot is not None and self._refresh_feedback():
            await self._emit_alerts(self._generation)
        return self._counters

    # ── Timer callbacks ─────────────────────────────────────────────────

    def _on_fast_tick(self) -> None:
        if self.state is not LifecycleState.RUNNING:
            return
        if self._tick_task is not None and not self._tick_task.done():
            self.telemetry.ticks_dropped += 1
            return
        self.telemetry.ticks_started += 1
        self._tick_task = asyncio.create_task(
            self._run_tick(self._generation), name=f"tick-{self.session_id}"
        )

    async def _run_tick(self, generation: int) -> None:
        sampler = self._sampler
        if sampler is None:
            return
        t0 = self._scheduler.time()
        try:
            raw = await sampler.tick(t0)
            if generation != self._generation:
                return
            snapshot = derive(raw)
        except asyncio.CancelledError:
            raise
        except DetectionError as e:
            if generation == self._generation:
                self._record_miss(getattr(e, "channel", "detection"))
            return
        except MediaStreamError as e:
            if generation == self._generation:
                await self._fail(e)
            return
        except Exception as e:
            if generation == self._generation:
                logger.error(f"{self._label}Tick error: {e}", exc_info=True)
                self._record_miss("error")
            return

        self.telemetry.last_tick_latency_ms = round((self._scheduler.time() - t0) * 1000, 1)
        await self._publish(raw, snapshot, generation)

    async def _on_delta_tick(self) -> None:
        if self.state is not LifecycleState.RUNNING:
            return
        generation = self._generation
        now = self._scheduler.time()
        record = self._tracker.close_window(self._latest_snapshot, now)
        self._latest_delta = record
        self.telemetry.deltas_emitted += 1
        self._latency.mark("first_delta", now)
        if generation == self._generation:
            await self._emit(self._on_delta, record)

    async def _on_status_tick(self) -> None:
        if self.state is LifecycleState.RUNNING:
            await self._emit(self._on_status, self.status())

    # ── Internals ──────────────────────────────────────────────────────

    async def _publish(self, raw: RawFrameData, snapshot: MetricsSnapshot, generation: int) -> None:
        if not raw.has_audio and self._latest_snapshot is not None:
            snapshot = snapshot.with_voice(self._latest_snapshot.voice)

        self._latest_snapshot = snapshot
        self._health.report_hit(snapshot.timestamp)
        self.telemetry.snapshots_produced += 1
        self._latency.mark("first_snapshot", snapshot.timestamp)
        self._tracker.observe(snapshot)
        self._summary.add(snapshot)
        self._speech_history.append(snapshot.voice.speech_rate)
        if raw.spoken_word:
            self._append_speech(raw.spoken_word)
        alerts_changed = self._refresh_feedback()

        await self._emit(self._on_snapshot, snapshot)
        if alerts_changed and generation == self._generation:
            await self._emit_alerts(generation)

    def _refresh_feedback(self) -> bool:
        """Recompute alerts and suggestions; True when either changed."""
        if self._latest_snapshot is None:
            return False
        alerts = self._alert_gen.generate(self._latest_snapshot, self._counters)
        suggestions = build_suggestions(self._latest_snapshot)
        changed = alerts != self._alerts or suggestions != self._suggestions
        self._alerts = alerts
        self._suggestions = suggestions
        return changed

    async def _emit_alerts(self, generation: int) -> None:
        if generation != self._generation:
            return
        await self._emit(self._on_alerts, {"alerts": self.alerts, "suggestions": self.suggestions})

    def _append_speech(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        c = self._counters
        c.transcript = f"{c.transcript} {text}".strip()
        c.words_spoken += count_words(text)
        c.filler_words += count_fillers(text)

    def _record_miss(self, channel: str) -> None:
        self.telemetry.ticks_missed += 1
        self._health.report_miss(channel)
        logger.debug(f"{self._label}Tick missed ({channel})")

    async def _fail(self, error: CoachError) -> None:
        self.telemetry.fatal_errors += 1
        logger.error(f"{self._label}Fatal stream error: {error}")
        await self._emit(self._on_error, {
            "error": type(error).__name__,
            "message": str(error),
            "fatal": True,
        })
        await self.stop(f"fatal: {type(error).__name__}")

    async def _release_media(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None or self._media_source is None:
            return
        try:
            await self._media_source.release(handle)
        except Exception as e:
            logger.warning(f"{self._label}Media release error: {e}")

    def _reset_session_state(self) -> None:
        self.telemetry.reset_counters()
        self._health.reset()
        self._latency.reset()
        self._tracker.reset()
        self._summary.reset()
        self._latest_snapshot = None
        self._latest_delta = None
        self._alerts = []
        self._suggestions = []
        self._speech_history.clear()
        self._counters = SessionCounters()

    def _on_transition(self, prev: LifecycleState, target: LifecycleState, reason: str) -> None:
        self.telemetry.lifecycle_state = target.value

    async def _emit(self, listener: Listener, payload: Any) -> None:
        if listener is None:
            return
        try:
            result = listener(payload)
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self._label}Listener error: {e}", exc_info=True)
