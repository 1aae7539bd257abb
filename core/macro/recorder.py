"""
Macro Recorder - turns live terminal input into a MacroScript
"""

from __future__ import annotations
from typing import Optional, List, Callable
from enum import Enum
import threading

from core.terminal import ITerminal, Subscription
from utils.logger import log

from . import keys
from .script import MacroScript, Step, TextStep, KeyStep


# ==================== RECORDER STATE MACHINE ====================

class RecorderState(Enum):
    IDLE = "idle"
    RECORDING = "recording"


class MacroRecorder:
    """
    Records raw terminal input events into steps.

    Key token byte sequences found anywhere in an event become KeyStep
    entries; the bytes between them are coalesced into the preceding
    TextStep, or start a new one.
    """

    def __init__(self, terminal: Optional[ITerminal] = None, encoding: str = "utf-8"):
        self._terminal = terminal
        self._encoding = encoding
        self._state = RecorderState.IDLE
        self._subscription: Optional[Subscription] = None

        # Step buffer
        self._steps: List[Step] = []
        self._lock = threading.Lock()

        # Callbacks
        self._on_state_change: Optional[Callable[[RecorderState], None]] = None
        self._on_step: Optional[Callable[[int], None]] = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == RecorderState.RECORDING

    @property
    def step_count(self) -> int:
        with self._lock:
            return len(self._steps)

    def set_callbacks(self,
                      on_state_change: Callable[[RecorderState], None] = None,
                      on_step: Callable[[int], None] = None):
        """Set callbacks for state changes and buffer growth (step count)"""
        self._on_state_change = on_state_change
        self._on_step = on_step

    def start(self):
        """Idle -> Recording; clears the step buffer"""
        if self._state != RecorderState.IDLE:
            return

        with self._lock:
            self._steps.clear()

        if self._terminal is not None:
            self._subscription = self._terminal.on_input(self.feed)

        self._set_state(RecorderState.RECORDING)
        log("[RECORDER] Recording started")

    def stop(self) -> MacroScript:
        """Recording -> Idle; returns the recorded script (empty when idle)"""
        if self._state == RecorderState.IDLE:
            return MacroScript()

        if self._subscription:
            self._subscription.unsubscribe()
            self._subscription = None

        with self._lock:
            script = MacroScript(list(self._steps))
            self._steps.clear()

        self._set_state(RecorderState.IDLE)
        log(f"[RECORDER] Recording stopped. {len(script)} steps captured")
        return script

    def toggle(self) -> Optional[MacroScript]:
        """Start when idle; stop and return the script when recording"""
        if self._state == RecorderState.IDLE:
            self.start()
            return None
        return self.stop()

    def _set_state(self, state: RecorderState):
        """Set state and notify callback"""
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def feed(self, data):
        """Handle one raw input event (bytes or str), in arrival order"""
        if self._state != RecorderState.RECORDING:
            return
        if isinstance(data, str):
            data = data.encode(self._encoding)
        if not data:
            return

        # pasted or batched events may mix text and several key tokens
        with self._lock:
            for token, chunk in keys.split_tokens(data):
                if token:
                    self._steps.append(KeyStep(token))
                    continue
                text = chunk.decode(self._encoding, errors="replace")
                if self._steps and isinstance(self._steps[-1], TextStep):
                    self._steps[-1] = TextStep(self._steps[-1].text + text)
                else:
                    self._steps.append(TextStep(text))
            count = len(self._steps)

        if self._on_step:
            self._on_step(count)

    def shutdown(self):
        """Clean shutdown"""
        self.stop()
