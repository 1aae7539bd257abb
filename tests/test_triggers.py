"""
Trigger engine: first-match-wins, cooldown, teardown
"""

import threading
from unittest.mock import MagicMock

from conftest import sync_dispatch

from core.errors import NotFoundError, PlayerBusyError
from core.macro import TriggerEngine, TriggerState


def make_engine(terminal, manual_timers, run_macro=None, cooldown=3.0):
    run_macro = run_macro or MagicMock()
    engine = TriggerEngine(terminal, run_macro, cooldown=cooldown,
                           timer_factory=manual_timers, dispatch=sync_dispatch)
    return engine, run_macro


class TestTriggerMatching:

    def test_first_match_wins_in_insertion_order(self, terminal, manual_timers):
        engine, _ = make_engine(terminal, manual_timers)
        engine.set_triggers({"login": "A", "login:": "B", "password": "C"})

        assert engine.match("please login: now") == ("login", "A")
        assert engine.match("password:") == ("password", "C")
        assert engine.match("nothing here") is None
        assert engine.match("") is None

    def test_matching_is_deterministic(self, terminal, manual_timers):
        engine, _ = make_engine(terminal, manual_timers)
        engine.set_triggers({"$": "Shell", "#": "Root", "user": "User"})
        results = {engine.match("user@host:~# $") for _ in range(20)}
        assert results == {("$", "Shell")}

    def test_blank_entries_dropped(self, terminal, manual_timers):
        engine, _ = make_engine(terminal, manual_timers)
        engine.set_triggers({"": "A", "x": "", "y": "  ", "z": "Z"})
        assert engine.triggers == {"z": "Z"}


class TestTriggerCooldown:

    def test_scenario_login_fires_once_within_cooldown(self, terminal, manual_timers):
        engine, run_macro = make_engine(terminal, manual_timers)
        engine.set_triggers({"login:": "LoginMacro"})
        engine.start()

        terminal.show("please login: now")
        terminal.show("please login: now")
        terminal.show("login: still here")

        run_macro.assert_called_once_with("LoginMacro")
        assert engine.state == TriggerState.COOLING
        assert len(manual_timers.instances) == 1
        assert manual_timers.instances[0].interval == 3.0
        assert manual_timers.instances[0].started

    def test_rearms_after_cooldown(self, terminal, manual_timers):
        engine, run_macro = make_engine(terminal, manual_timers)
        engine.set_triggers({"login:": "LoginMacro"})
        engine.start()

        terminal.show("login:")
        manual_timers.instances[0].fire()
        assert engine.state == TriggerState.ARMED

        terminal.show("login:")
        assert run_macro.call_count == 2

    def test_failure_does_not_leave_engine_cooling(self, terminal, manual_timers):
        run_macro = MagicMock(side_effect=NotFoundError("Macro \"Gone\" not found"))
        on_error = MagicMock()
        engine, _ = make_engine(terminal, manual_timers, run_macro=run_macro)
        engine.set_callbacks(on_error=on_error)
        engine.set_triggers({"prompt>": "Gone"})
        engine.start()

        terminal.show("prompt>")
        assert on_error.call_args.args[0] == "Gone"
        assert isinstance(on_error.call_args.args[1], NotFoundError)

        manual_timers.instances[0].fire()
        assert engine.state == TriggerState.ARMED

    def test_busy_player_is_reported(self, terminal, manual_timers):
        run_macro = MagicMock(side_effect=PlayerBusyError("busy"))
        on_error = MagicMock()
        engine, _ = make_engine(terminal, manual_timers, run_macro=run_macro)
        engine.set_callbacks(on_error=on_error)
        engine.set_triggers({"x": "M"})
        engine.start()
        terminal.show("x")
        on_error.assert_called_once()

    def test_on_fire_callback(self, terminal, manual_timers):
        on_fire = MagicMock()
        engine, _ = make_engine(terminal, manual_timers)
        engine.set_callbacks(on_fire=on_fire)
        engine.set_triggers({"ok": "Done"})
        engine.start()
        terminal.show("ok")
        on_fire.assert_called_once_with("ok", "Done")

    def test_real_timer_rearms(self, terminal):
        fired = threading.Event()
        engine = TriggerEngine(terminal, lambda name: fired.set(), cooldown=0.05)
        engine.set_triggers({"go": "M"})
        engine.start()

        terminal.show("go")
        assert fired.wait(2.0)

        for _ in range(200):
            if engine.state == TriggerState.ARMED:
                break
            threading.Event().wait(0.01)
        assert engine.state == TriggerState.ARMED
        engine.stop()


class TestTriggerLifecycle:

    def test_stop_unsubscribes_and_cancels_timer(self, terminal, manual_timers):
        engine, run_macro = make_engine(terminal, manual_timers)
        engine.set_triggers({"a": "A"})
        engine.start()
        assert terminal.screen_listeners == 1

        terminal.show("a")
        engine.stop()

        assert terminal.screen_listeners == 0
        assert manual_timers.instances[0].cancelled
        assert engine.state == TriggerState.ARMED

        terminal.show("a")
        run_macro.assert_called_once()

    def test_start_is_idempotent(self, terminal, manual_timers):
        engine, _ = make_engine(terminal, manual_timers)
        engine.start()
        engine.start()
        assert terminal.screen_listeners == 1
