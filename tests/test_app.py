"""
Command line: commands run against an in-memory backend
"""

from unittest.mock import patch

import pytest

import app
from conftest import FakeContentsBackend, REPO
from core.config import AppConfig, load_config


@pytest.fixture
def cli(tmp_path):
    backend = FakeContentsBackend()
    config = AppConfig(repo=REPO, storage_path=str(tmp_path / "storage.json"), step_delay_ms=0)

    def run(*argv):
        with patch("app.load_config", return_value=config), \
                patch("app.configure_logging"), \
                patch("app.set_debug_mode") as set_debug, \
                patch("app.HttpTransport", return_value=backend):
            code = app.main(list(argv))
            run.debug_calls = [c.args for c in set_debug.call_args_list]
            return code

    run.backend = backend
    return run


def test_list(cli, capsys):
    cli.backend.put_file("macros/b.txt", "x")
    cli.backend.put_file("macros/a.txt", "y")
    cli.backend.put_file("macros/_Login.txt", "{USER}")

    assert cli("list") == 0
    assert capsys.readouterr().out.split() == ["a", "b"]


def test_save_then_update(cli, tmp_path, capsys):
    source = tmp_path / "m.txt"
    source.write_text("ls\n<ENTER>")
    assert cli("save", "m", str(source)) == 0

    source.write_text("pwd\n<ENTER>")
    assert cli("save", "m", str(source)) == 0
    assert cli.backend.files["macros/m.txt"][0] == "pwd\n<ENTER>"

    capsys.readouterr()
    assert cli("show", "m") == 0
    assert capsys.readouterr().out == "pwd\n<ENTER>\n"


def test_delete_and_missing(cli, capsys):
    cli.backend.put_file("macros/m.txt", "x")
    assert cli("delete", "m") == 0
    assert cli.backend.files == {}

    assert cli("show", "m") == 1
    assert "[not_found]" in capsys.readouterr().err


def test_trigger_table_persists(cli, capsys):
    assert cli("trigger-set", "login:", "Login") == 0
    assert cli("trigger-set", "$", "Shell") == 0
    assert cli("trigger-set", "$") == 0

    capsys.readouterr()
    assert cli("triggers") == 0
    assert capsys.readouterr().out == "login:\tLogin\n"


def test_debug_flag_turns_on_debug_output(cli):
    assert cli("--debug", "triggers") == 0
    assert cli.debug_calls == [(True,)]
    assert cli("triggers") == 0
    assert cli.debug_calls == []


def test_init_config_writes_yaml(cli, tmp_path):
    path = tmp_path / "conf" / "config.yaml"
    assert cli("--config", str(path), "init-config") == 0
    assert load_config(str(path)).repo == REPO
    assert cli.backend.calls == []
