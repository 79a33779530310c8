"""
Interview Coach: Lifecycle State Machine

Enforces the lifecycle: STOPPED → STARTING → RUNNING → STOPPING → STOPPED.
A failed start goes straight from STARTING back to STOPPED, so a half-running
session is never observable.  Every transition is logged and kept in history.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger("coach.state")


class LifecycleState(str, Enum):
    STOPPED = "stopped"      # Nothing acquired, no timers
    STARTING = "starting"    # Acquiring models / media
    RUNNING = "running"      # Timers live, stream owned
    STOPPING = "stopping"    # Releasing everything


_TRANSITIONS: Dict[LifecycleState, Set[LifecycleState]] = {
    LifecycleState.STOPPED:  {LifecycleState.STARTING},
    LifecycleState.STARTING: {LifecycleState.RUNNING, LifecycleState.STOPPED, LifecycleState.STOPPING},
    LifecycleState.RUNNING:  {LifecycleState.STOPPING},
    LifecycleState.STOPPING: {LifecycleState.STOPPED},
}


class LifecycleStateMachine:
    """
    Enforces legal transitions and notifies a listener.

    Usage:
        sm = LifecycleStateMachine(on_transition=cb)
        sm.transition(LifecycleState.STARTING)   # OK
        sm.transition(LifecycleState.RUNNING)    # OK
        sm.transition(LifecycleState.STARTING)   # illegal from RUNNING → raises
    """

    def __init__(
        self,
        on_transition: Optional[Callable[[LifecycleState, LifecycleState, str], None]] = None,
        label: str = "",
    ) -> None:
        self._state = LifecycleState.STOPPED
        self._on_transition = on_transition
        self._label = label
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    def transition(self, target: LifecycleState, reason: str = "") -> None:
        """Attempt a transition. Raises ValueError on illegal transitions."""
        if target == self._state:
            return

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal lifecycle transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {sorted(s.value for s in allowed)}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        logger.info(
            f"{self._label}STATE: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"Lifecycle transition callback error: {e}")
