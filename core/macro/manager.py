"""
Macro Manager - High-level API for macro operations
Coordinates recorder, player, trigger engine, remote store and local storage
"""

from __future__ import annotations
from typing import Optional, List, Callable, Dict, Union
import threading

from core.errors import MacroError, NotFoundError
from core.storage import StorageBridge, KEY_USER, KEY_PASS, KEY_TRIGGERS
from core.terminal import ITerminal
from utils.logger import log, log_error

from .player import MacroPlayer, PlaybackState, DEFAULT_STEP_DELAY
from .recorder import MacroRecorder, RecorderState
from .script import MacroScript, LOGIN_MACRO, PLACEHOLDER_USER, PLACEHOLDER_PASS
from .store import RemoteMacroStore
from .triggers import TriggerEngine, DEFAULT_COOLDOWN


class MacroManager:
    """
    High-level Macro Manager
    Owns one recorder, player and trigger engine for a terminal; holds no
    global state, so callers keep exactly one instance per terminal.
    """

    def __init__(self,
                 terminal: ITerminal,
                 store: RemoteMacroStore,
                 storage: StorageBridge,
                 step_delay: float = DEFAULT_STEP_DELAY,
                 cooldown: float = DEFAULT_COOLDOWN,
                 trigger_engine: Optional[TriggerEngine] = None):
        self._terminal = terminal
        self._store = store
        self._storage = storage

        # Components
        self._recorder = MacroRecorder(terminal)
        self._player = MacroPlayer(terminal, step_delay=step_delay)
        self._triggers = trigger_engine or TriggerEngine(terminal, self.run_macro, cooldown=cooldown)

        self._started = False

        # Callbacks
        self._on_notify: Optional[Callable[[str, bool], None]] = None
        self._on_macros_change: Optional[Callable[[List[str]], None]] = None
        self._on_recorder_state_change: Optional[Callable[[RecorderState], None]] = None

        self._recorder.set_callbacks(on_state_change=self._handle_recorder_state_change)
        self._triggers.set_callbacks(on_error=self._handle_trigger_error)

    # ==================== PROPERTIES ====================

    @property
    def store(self) -> RemoteMacroStore:
        return self._store

    @property
    def recorder(self) -> MacroRecorder:
        return self._recorder

    @property
    def player(self) -> MacroPlayer:
        return self._player

    @property
    def trigger_engine(self) -> TriggerEngine:
        return self._triggers

    @property
    def is_recording(self) -> bool:
        return self._recorder.is_recording

    @property
    def is_playing(self) -> bool:
        return self._player.state == PlaybackState.PLAYING

    # ==================== CALLBACKS ====================

    def set_callbacks(self,
                      on_notify: Callable[[str, bool], None] = None,
                      on_macros_change: Callable[[List[str]], None] = None,
                      on_recorder_state_change: Callable[[RecorderState], None] = None):
        """Set manager callbacks (notifications are (message, success))"""
        self._on_notify = on_notify
        self._on_macros_change = on_macros_change
        self._on_recorder_state_change = on_recorder_state_change

    def _notify(self, message: str, success: bool = True):
        if success:
            log(f"[MANAGER] {message}")
        else:
            log_error(f"[MANAGER] {message}")
        if self._on_notify:
            self._on_notify(message, success)

    def _fail(self, what: str, error: MacroError):
        self._notify(f"{what}: [{error.kind}] {error}", success=False)

    def _handle_recorder_state_change(self, state: RecorderState):
        if self._on_recorder_state_change:
            self._on_recorder_state_change(state)

    def _handle_trigger_error(self, name: str, error: Exception):
        if isinstance(error, MacroError):
            self._fail(f"Triggered macro \"{name}\" failed", error)

    def _macros_changed(self):
        if self._on_macros_change:
            self._on_macros_change(self.macro_names())

    # ==================== LIFECYCLE ====================

    def start(self):
        """Load triggers, list macros, run the login macro and arm triggers"""
        if self._started:
            return
        self._started = True

        try:
            self.load_triggers()
        except MacroError as e:
            self._fail("Could not load triggers", e)

        if self.refresh():
            if LOGIN_MACRO in self._store.index:
                try:
                    self.run_macro(LOGIN_MACRO)
                except MacroError as e:
                    self._fail("Login macro failed", e)

        self._triggers.start()
        log("[MANAGER] Started")

    def shutdown(self):
        """Clean shutdown"""
        self._triggers.stop()
        self._recorder.shutdown()
        self._player.shutdown()
        self._storage.close()
        self._started = False
        log("[MANAGER] Shutdown complete")

    # ==================== MACROS ====================

    def refresh(self) -> bool:
        """Re-list the remote macros; failures are reported, not raised"""
        try:
            self._store.refresh()
        except MacroError as e:
            self._fail("Error loading macros", e)
            return False
        self._macros_changed()
        return True

    def macro_names(self) -> List[str]:
        """Macro names for menus (the reserved login macro is hidden)"""
        return [name for name in self._store.names() if name != LOGIN_MACRO]

    def credentials(self) -> Dict[str, str]:
        return {
            PLACEHOLDER_USER: self._storage.get(KEY_USER, "") or "",
            PLACEHOLDER_PASS: self._storage.get(KEY_PASS, "") or "",
        }

    def run_macro(self, name: str, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Resolve a macro through the store and play it in the calling thread.

        The login macro gets {USER}/{PASS} replaced from local storage.
        """
        script = self._store.resolve(name)
        substitutions = self.credentials() if name == LOGIN_MACRO else None

        log(f"[MANAGER] Running macro \"{name}\"")
        completed = self._player.execute(script, substitutions, cancel_event=cancel_event, name=name)
        if completed and name != LOGIN_MACRO:
            self._notify(f"Macro \"{name}\" executed")
        return completed

    def stop_playback(self):
        self._player.stop()

    def save_macro(self, name: str, content: Union[MacroScript, str]) -> Optional[str]:
        """Create or update using the cached revision; returns the new revision"""
        return self._store_macro(name, content, self._store.revision_of(name))

    def _store_macro(self, name: str, content: Union[MacroScript, str],
                     expected_revision: Optional[str]) -> Optional[str]:
        try:
            revision = self._store.save(name, content, expected_revision)
        except MacroError as e:
            self._fail(f"Error saving macro \"{name}\"", e)
            return None
        self._notify(f"Macro \"{name}\" saved")
        self._macros_changed()
        return revision

    def edit_macro(self, name: str, text: str) -> Optional[str]:
        return self.save_macro(name, text)

    def delete_macro(self, name: str) -> bool:
        revision = self._store.revision_of(name)
        if revision is None:
            self._fail(f"Error deleting macro \"{name}\"", NotFoundError(f"Macro \"{name}\" is not loaded"))
            return False
        try:
            self._store.delete(name, revision)
        except MacroError as e:
            self._fail(f"Error deleting macro \"{name}\"", e)
            return False
        self._notify(f"Macro \"{name}\" deleted")
        self._macros_changed()
        return True

    # ==================== RECORDING ====================

    def start_recording(self):
        if self.is_recording or self.is_playing:
            return
        self._recorder.start()

    def stop_recording(self, name: Optional[str] = None) -> MacroScript:
        """Stop recording; with a name the recording is saved as a new macro"""
        script = self._recorder.stop()
        if not len(script):
            log("[MANAGER] Empty recording discarded")
            return script
        if name is None or not name.strip():
            log("[MANAGER] Unnamed recording discarded")
            return script
        # always a create: an existing macro with this name is a conflict
        self._store_macro(name.strip(), script, None)
        return script

    # ==================== SETTINGS ====================

    def set_credential(self, kind: str, value: str):
        """kind is 'user' or 'pass'; a blank value clears it"""
        keys = {"user": KEY_USER, "pass": KEY_PASS}
        if kind not in keys:
            raise ValueError(f"Unknown credential kind: {kind!r}")
        self._storage.set(keys[kind], value)
        self._notify(f"{'User' if kind == 'user' else 'Password'} saved")

    def load_triggers(self) -> Dict[str, str]:
        triggers = self._storage.get(KEY_TRIGGERS, {}) or {}
        if not isinstance(triggers, dict):
            log_error("[MANAGER] Stored triggers are not a mapping, ignoring")
            triggers = {}
        self._triggers.set_triggers(triggers)
        return self._triggers.triggers

    def set_triggers(self, triggers: Dict[str, str]):
        """Replace and persist the trigger table (blank rows are dropped)"""
        cleaned = {}
        for pattern, name in triggers.items():
            pattern, name = (pattern or "").strip(), (name or "").strip()
            if pattern and name:
                cleaned[pattern] = name
        self._triggers.set_triggers(cleaned)
        self._storage.set(KEY_TRIGGERS, cleaned)
        self._notify("Triggers saved")
