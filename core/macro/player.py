"""
Macro Playback Engine
Replays macro steps into the terminal with a fixed inter-step delay
"""

from __future__ import annotations
from typing import Optional, Callable, Dict
from enum import Enum
import threading
import time

from core.errors import PlayerBusyError, PlaybackError
from core.terminal import ITerminal
from utils.logger import log, log_error

from .script import MacroScript, Step

DEFAULT_STEP_DELAY = 0.05  # 50ms


# ==================== PLAYBACK STATE ====================

class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"
    ERROR = "error"


# ==================== PLAYBACK ENGINE ====================

class MacroPlayer:
    """
    Plays a MacroScript against one terminal.

    Holds an exclusive write lease while executing: a second execute()
    while one is in flight raises PlayerBusyError instead of queueing.
    """

    def __init__(self, terminal: ITerminal, step_delay: float = DEFAULT_STEP_DELAY,
                 encoding: str = "utf-8"):
        self._terminal = terminal
        self._step_delay = step_delay
        self._encoding = encoding
        self._state = PlaybackState.IDLE
        self._current_step = 0

        self._lease = threading.Lock()
        self._stop_event = threading.Event()
        self._playback_thread: Optional[threading.Thread] = None

        # Callbacks
        self._on_state_change: Optional[Callable[[PlaybackState], None]] = None
        self._on_step: Optional[Callable[[int, Step], None]] = None

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state == PlaybackState.PLAYING

    @property
    def current_step_index(self) -> int:
        return self._current_step

    @property
    def step_delay(self) -> float:
        return self._step_delay

    def set_callbacks(self,
                      on_state_change: Callable[[PlaybackState], None] = None,
                      on_step: Callable[[int, Step], None] = None):
        """Set playback callbacks"""
        self._on_state_change = on_state_change
        self._on_step = on_step

    def execute(self, script: MacroScript, substitutions: Optional[Dict[str, str]] = None,
                cancel_event: Optional[threading.Event] = None, name: str = "") -> bool:
        """
        Run the script in the calling thread.

        Args:
            script: Steps to replay
            substitutions: Placeholder -> value, applied to text steps only
            cancel_event: Checked between steps; set it to abort
            name: Macro name for log lines

        Returns:
            True if every step was written, False if playback was cancelled

        Raises:
            PlayerBusyError: another execution holds the terminal
            PlaybackError: a terminal write failed; later steps are abandoned
        """
        if not self._lease.acquire(blocking=False):
            raise PlayerBusyError(f"Macro player is busy, cannot run \"{name or 'macro'}\"")

        try:
            self._stop_event.clear()
            self._current_step = 0
            self._set_state(PlaybackState.PLAYING)
            log(f"[PLAYER] Playback started: {name or '<unnamed>'} ({len(script)} steps)")
            completed = self._playback_loop(script.substitute(substitutions or {}), cancel_event)

            if completed:
                self._set_state(PlaybackState.IDLE)
                log(f"[PLAYER] Playback completed: {name or '<unnamed>'}")
            else:
                self._set_state(PlaybackState.STOPPED)
                log(f"[PLAYER] Playback cancelled at step {self._current_step}: {name or '<unnamed>'}")
            return completed
        except PlaybackError:
            self._set_state(PlaybackState.ERROR)
            raise
        finally:
            self._lease.release()

    def play(self, script: MacroScript, substitutions: Optional[Dict[str, str]] = None,
             name: str = "",
             on_error: Optional[Callable[[Exception], None]] = None) -> threading.Thread:
        """
        Start playback in a background thread.

        Busy or write errors are passed to on_error (or logged when it is not set).
        """
        def runner():
            try:
                self.execute(script, substitutions, name=name)
            except (PlayerBusyError, PlaybackError) as e:
                if on_error:
                    on_error(e)
                else:
                    log_error(f"[PLAYER] {e}")

        thread = threading.Thread(target=runner, daemon=True)
        self._playback_thread = thread
        thread.start()
        return thread

    def stop(self):
        """Abort the running playback before its next step"""
        if self._state != PlaybackState.PLAYING:
            return
        self._stop_event.set()
        log("[PLAYER] Stop requested")

    def _set_state(self, state: PlaybackState):
        """Update state, then notify the listener"""
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def _cancelled(self, cancel_event: Optional[threading.Event]) -> bool:
        if self._stop_event.is_set():
            return True
        return cancel_event is not None and cancel_event.is_set()

    def _playback_loop(self, script: MacroScript, cancel_event: Optional[threading.Event]) -> bool:
        """Replay steps in order on the calling thread"""
        last_idx = len(script) - 1

        for idx, step in enumerate(script):
            if self._cancelled(cancel_event):
                return False

            self._current_step = idx
            data = step.to_bytes(self._encoding)

            try:
                self._terminal.write(data)
            except Exception as e:
                log_error(f"[PLAYER] Terminal write failed at step {idx}: {e}")
                raise PlaybackError(
                    f"Terminal write failed at step {idx + 1} of {len(script)}: {e}",
                    step_index=idx, cause=e
                ) from e

            if self._on_step:
                self._on_step(idx, step)

            if idx < last_idx:
                self._interruptible_sleep(self._step_delay, cancel_event)

        return True

    def _interruptible_sleep(self, seconds: float, cancel_event: Optional[threading.Event]):
        """Sleep that can be interrupted by stop or cancel"""
        interval = 0.01
        deadline = time.monotonic() + seconds

        while not self._cancelled(cancel_event):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(interval, remaining))

    def shutdown(self):
        """Stop playback and wait for the worker thread"""
        self.stop()
        if self._playback_thread and self._playback_thread is not threading.current_thread():
            self._playback_thread.join(timeout=2.0)
            self._playback_thread = None
