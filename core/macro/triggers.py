"""
Trigger Engine - runs a macro when a pattern shows up on the terminal line
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
from enum import Enum
import threading

from core.errors import MacroError
from core.terminal import ITerminal, Subscription
from utils.logger import log, log_error

DEFAULT_COOLDOWN = 3.0  # seconds


class TriggerState(Enum):
    ARMED = "armed"
    COOLING = "cooling"


def _daemon_timer(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


def _thread_dispatch(job: Callable[[], None]):
    threading.Thread(target=job, daemon=True).start()


class TriggerEngine:
    """
    Watches the current terminal line and fires the first matching trigger.

    Patterns are tested in insertion order and only the first match fires.
    After a trigger fires the engine stays in COOLING for the cooldown
    window, ignoring screen changes, then re-arms whether or not the macro
    succeeded.
    """

    def __init__(self,
                 terminal: ITerminal,
                 run_macro: Callable[[str], Any],
                 cooldown: float = DEFAULT_COOLDOWN,
                 timer_factory: Callable[[float, Callable[[], None]], Any] = _daemon_timer,
                 dispatch: Callable[[Callable[[], None]], None] = _thread_dispatch):
        """
        Args:
            terminal: Terminal to observe
            run_macro: Called with the macro name; resolves and plays it
            cooldown: Seconds to ignore screen changes after a trigger fires
            timer_factory: Builds a startable/cancellable cooldown timer
            dispatch: Runs the macro job off the notification path
        """
        self._terminal = terminal
        self._run_macro = run_macro
        self._cooldown = cooldown
        self._timer_factory = timer_factory
        self._dispatch = dispatch

        self._triggers: Tuple[Tuple[str, str], ...] = ()
        self._state = TriggerState.ARMED
        self._lock = threading.Lock()
        self._timer = None
        self._subscription: Optional[Subscription] = None

        # Callbacks
        self._on_fire: Optional[Callable[[str, str], None]] = None
        self._on_error: Optional[Callable[[str, Exception], None]] = None

    @property
    def state(self) -> TriggerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    @property
    def triggers(self) -> Dict[str, str]:
        return dict(self._triggers)

    def set_callbacks(self,
                      on_fire: Callable[[str, str], None] = None,
                      on_error: Callable[[str, Exception], None] = None):
        """on_fire(pattern, macro_name); on_error(macro_name, error)"""
        self._on_fire = on_fire
        self._on_error = on_error

    def set_triggers(self, triggers: Dict[str, str]):
        """Replace the trigger table; entries with a blank pattern or name are dropped"""
        entries: List[Tuple[str, str]] = []
        for pattern, macro_name in triggers.items():
            if not pattern or not macro_name or not str(macro_name).strip():
                continue
            entries.append((pattern, str(macro_name).strip()))
        with self._lock:
            self._triggers = tuple(entries)
        log(f"[TRIGGER] {len(entries)} trigger(s) loaded")

    def match(self, line: str) -> Optional[Tuple[str, str]]:
        """First (pattern, macro_name) whose pattern occurs in line"""
        if not line:
            return None
        for pattern, macro_name in self._triggers:
            if pattern in line:
                return pattern, macro_name
        return None

    def start(self):
        """Subscribe to screen changes"""
        if self._subscription is not None:
            return
        self._subscription = self._terminal.on_screen_change(self.on_screen_change)
        log("[TRIGGER] Screen observer started")

    def stop(self):
        """Unsubscribe and drop any pending cooldown"""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._state = TriggerState.ARMED
        log("[TRIGGER] Screen observer stopped")

    def on_screen_change(self):
        """Screen-change notification handler"""
        with self._lock:
            if self._state != TriggerState.ARMED:
                return
            hit = self.match(self._terminal.current_line())
            if hit is None:
                return
            self._state = TriggerState.COOLING
            self._timer = self._timer_factory(self._cooldown, self._rearm)
            self._timer.start()

        pattern, macro_name = hit
        log(f"[TRIGGER] \"{pattern}\" matched -> running macro \"{macro_name}\"")
        if self._on_fire:
            self._on_fire(pattern, macro_name)
        self._dispatch(lambda: self._run(macro_name))

    def _run(self, macro_name: str):
        try:
            self._run_macro(macro_name)
        except MacroError as e:
            log_error(f"[TRIGGER] Macro \"{macro_name}\" failed: {e.kind}: {e}")
            if self._on_error:
                self._on_error(macro_name, e)

    def _rearm(self):
        with self._lock:
            self._timer = None
            self._state = TriggerState.ARMED
        log("[TRIGGER] Cooldown over, armed")
