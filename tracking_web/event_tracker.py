"""
UI telemetry capture.

`EventTracker` turns raw UI signals (text changes, clipboard actions, scroll
positions, focus changes, activity pings) into structured event payloads and
ships each one as a detached asyncio task. Callers never wait on delivery and
never see delivery errors; those only reach the module logger.

All handlers must be called from the thread running the tracker's event loop.
"""

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from tracking_api.events import EventType

logger = logging.getLogger(__name__)

TYPING_DEBOUNCE_MS = 2000
IDLE_THRESHOLD_MS = 60000
COPIED_TEXT_LIMIT = 200
ACTIVITY_SIGNALS = frozenset({"pointerdown", "keydown", "scroll", "touchstart"})

EventSink = Callable[[str, Dict[str, Any]], Awaitable[Any]]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def scroll_percentage(scroll_top: float, scroll_height: float, client_height: float) -> int:
    """How far a scrollable area is scrolled, 0-100.

    Returns 0 when there is nothing to scroll or the ratio is not a finite number.
    """
    overflow = scroll_height - client_height
    if overflow <= 0:
        return 0
    value = scroll_top / overflow * 100
    if not math.isfinite(value):
        return 0
    return min(100, max(0, math.floor(value + 0.5)))


class EventTracker:
    """Derives telemetry payloads from UI signals and dispatches them fire-and-forget."""

    def __init__(
        self,
        sink: EventSink,
        clock: Callable[[], float] = monotonic_ms,
        typing_debounce_ms: float = TYPING_DEBOUNCE_MS,
        idle_threshold_ms: float = IDLE_THRESHOLD_MS,
        track_idle: bool = True,
    ):
        self.sink = sink
        self.clock = clock
        self.typing_debounce_ms = typing_debounce_ms
        self.idle_threshold_ms = idle_threshold_ms
        # Off when idle detection runs in the browser instead.
        self.track_idle = track_idle

        self._pending: Set[asyncio.Task] = set()

        # typing burst
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._typing_started_at: Optional[float] = None
        self._keystroke_count = 0
        self._input_length = 0

        # idle detection
        self._idle_timer: Optional[asyncio.TimerHandle] = None
        self._idle = False
        self._idle_since: Optional[float] = None

        self._session_started_at: Optional[float] = None

    @classmethod
    def for_client(cls, client, user_id: str, **kwargs) -> "EventTracker":
        """Tracker whose events go to `client.log_event` for `user_id`."""

        async def sink(event_type: str, data: Dict[str, Any]):
            await client.log_event(user_id, event_type, data)

        return cls(sink, **kwargs)

    # --- dispatch ---

    def _emit(self, event_type: EventType, data: Dict[str, Any]):
        task = asyncio.get_running_loop().create_task(self._deliver(event_type.value, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event_type: str, data: Dict[str, Any]):
        try:
            await self.sink(event_type, data)
        except Exception as e:
            logger.warning(f"Failed to log event {event_type}: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for every dispatched event to finish delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        """Cancel timers without emitting and wait for in-flight deliveries."""
        self._cancel_typing_timer()
        self._cancel_idle_timer()
        await self.drain()

    # --- prompt field ---

    def on_prompt_input(self, text: str):
        """A change in the prompt field. Emits `typing` once input pauses for the debounce window."""
        if self._typing_started_at is None:
            self._typing_started_at = self.clock()
        self._keystroke_count += 1
        self._input_length = len(text)

        self._cancel_typing_timer()
        self._typing_timer = asyncio.get_running_loop().call_later(
            self.typing_debounce_ms / 1000, self._flush_typing
        )

    def _flush_typing(self):
        self._typing_timer = None
        if self._typing_started_at is None:
            return
        data = {
            "inputLength": self._input_length,
            "timeInField": int(self.clock() - self._typing_started_at),
            "keystrokeCount": self._keystroke_count,
        }
        self._typing_started_at = None
        self._keystroke_count = 0
        self._emit(EventType.TYPING, data)

    def _cancel_typing_timer(self):
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    def on_paste(self, pasted_text: str, current_text: str):
        self._emit(EventType.PASTE, {
            "pastedLength": len(pasted_text),
            "source": "clipboard",
            "previousLength": len(current_text),
            "resultingLength": len(current_text) + len(pasted_text),
        })

    def on_copy(self, selection: str, current_text: str):
        self._emit(EventType.COPY, {
            "copiedLength": len(selection),
            "copiedFromPrompt": True,
            "totalPromptLength": len(current_text),
            "timestamp": _timestamp(),
        })

    def on_cut(self, selection: str, current_text: str):
        self._emit(EventType.CUT, {
            "cutLength": len(selection),
            "remainingLength": len(current_text) - len(selection),
            "timestamp": _timestamp(),
        })

    def on_prompt_focus(self, current_text: str):
        self._emit(EventType.PROMPT_FOCUS, {"currentLength": len(current_text), "timestamp": _timestamp()})

    def on_prompt_blur(self, current_text: str):
        self._emit(EventType.PROMPT_BLUR, {"finalLength": len(current_text), "timestamp": _timestamp()})

    def on_prompt_submit(self, prompt: str) -> float:
        """Record the prompt about to be sent. Returns the submit mark for `on_response_received`."""
        submitted_at = self.clock()
        self._emit(EventType.PROMPT_SUBMIT, {
            "promptText": prompt,
            "promptLength": len(prompt),
            "timestamp": _timestamp(),
        })
        return submitted_at

    def on_prompt_clear(self, cleared_text: str, method: str = "resetButton"):
        if not cleared_text:
            return
        self._emit(EventType.PROMPT_CLEAR, {
            "clearedLength": len(cleared_text),
            "method": method,
            "timestamp": _timestamp(),
        })

    # --- response display ---

    def on_response_received(self, response: str, submitted_at: float, token_count: Optional[int] = None):
        self._emit(EventType.RESPONSE_VIEW, {
            "responseLength": len(response),
            "responseTime": int(self.clock() - submitted_at),
            "tokenCount": token_count,
        })

    def on_response_scroll(self, scroll_top: float, scroll_height: float, client_height: float):
        self._emit(EventType.RESPONSE_SCROLL, {
            "scrollPercentage": scroll_percentage(scroll_top, scroll_height, client_height),
            "scrollTop": scroll_top,
            "scrollHeight": scroll_height,
            "timestamp": _timestamp(),
        })

    def on_response_copy(self, selection: str, response: str):
        if not selection:
            return
        self._emit(EventType.RESPONSE_COPY, {
            "copiedLength": len(selection),
            "totalResponseLength": len(response),
            "copiedText": selection[:COPIED_TEXT_LIMIT],
            "timestamp": _timestamp(),
        })

    def on_context_reset(self, prompt: str, response: str):
        self._emit(EventType.CONTEXT_RESET, {
            "previousPromptLength": len(prompt),
            "previousResponseLength": len(response),
            "timestamp": _timestamp(),
        })

    # --- session lifecycle ---

    def start_session(self, user_agent: Optional[str] = None):
        """Mount: emit sessionStart and arm idle detection."""
        self._session_started_at = self.clock()
        self._emit(EventType.SESSION_START, {"timestamp": _timestamp(), "userAgent": user_agent})
        self._arm_idle_timer()

    def end_session(self):
        """Unmount: emit sessionEnd with the session duration and stop idle detection."""
        self._cancel_idle_timer()
        started = self._session_started_at if self._session_started_at is not None else self.clock()
        self._session_started_at = None
        self._emit(EventType.SESSION_END, {
            "sessionDuration": int(self.clock() - started),
            "timestamp": _timestamp(),
        })

    # --- idle detection ---

    @property
    def idle(self) -> bool:
        return self._idle

    def on_activity(self, kind: str = "pointerdown"):
        """Any user activity: ends an idle period and re-arms the idle timer."""
        if kind not in ACTIVITY_SIGNALS:
            raise ValueError(f"Unknown activity signal: {kind}")
        if self._idle:
            self._idle = False
            idle_since = self._idle_since
            self._idle_since = None
            self._emit(EventType.IDLE_END, {
                "timestamp": _timestamp(),
                "idleDuration": int(self.clock() - idle_since) if idle_since is not None else None,
            })
        self._arm_idle_timer()

    def _arm_idle_timer(self):
        self._cancel_idle_timer()
        if not self.track_idle:
            return
        self._idle_timer = asyncio.get_running_loop().call_later(
            self.idle_threshold_ms / 1000, self._on_idle_timeout
        )

    def _on_idle_timeout(self):
        self._idle_timer = None
        if self._idle:
            return
        self._idle = True
        self._idle_since = self.clock()
        self._emit(EventType.IDLE_START, {
            "timestamp": _timestamp(),
            "idleThreshold": self.idle_threshold_ms,
        })

    def _cancel_idle_timer(self):
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
