"""
Terminal macro tool - command line entry point
"""

import argparse
import os
import sys

from core.config import load_config, save_config, DEFAULT_CONFIG_FILE
from core.errors import MacroError
from core.macro import MacroManager, RemoteMacroStore
from core.storage import LoopbackChannel, StorageBridge, StorageHost, KEY_TOKEN
from core.terminal import StreamTerminal
from core.transport import HttpTransport
from utils.logger import configure_logging, set_debug_mode, log


def build_manager(config, terminal=None):
    """Wire storage host, bridge, transport, store and manager from config"""
    page_end, host_end = LoopbackChannel.pair()
    host = StorageHost(host_end, config.storage_path)
    storage = StorageBridge(page_end, timeout=config.storage_timeout_s)

    token = config.token_from_env() or storage.get(KEY_TOKEN)
    if not token:
        log("[APP] No access token found; macro writes are disabled")

    transport = HttpTransport(config.api_base_url, token=token, timeout_s=config.api_timeout_s)
    store = RemoteMacroStore(
        transport,
        repo=config.repo,
        macros_root=config.macros_root,
        branch=config.branch,
        can_write=config.can_write if config.writers else None,
    )
    manager = MacroManager(
        terminal or StreamTerminal(),
        store,
        storage,
        step_delay=config.step_delay_ms / 1000.0,
        cooldown=config.trigger_cooldown_s,
    )
    return manager, host


def _print_notification(message, success):
    stream = sys.stderr
    stream.write(("" if success else "error: ") + message + "\n")


def cmd_list(manager, args):
    manager.store.refresh()
    for name in manager.macro_names():
        print(name)


def cmd_show(manager, args):
    macro = manager.store.fetch(args.name)
    print(macro.content.serialize())


def cmd_save(manager, args):
    with open(args.file, 'r', encoding='utf-8') as f:
        text = f.read()
    manager.store.refresh()
    revision = manager.store.revision_of(args.name)
    new_revision = manager.store.save(args.name, text, revision)
    print(new_revision)


def cmd_delete(manager, args):
    manager.store.refresh()
    revision = manager.store.revision_of(args.name)
    if revision is None:
        macro = manager.store.fetch(args.name)
        revision = macro.revision
    manager.store.delete(args.name, revision)


def cmd_play(manager, args):
    manager.store.refresh()
    manager.run_macro(args.name)
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def cmd_triggers(manager, args):
    for pattern, name in manager.load_triggers().items():
        print(f"{pattern}\t{name}")


def cmd_trigger_set(manager, args):
    triggers = manager.load_triggers()
    if args.macro:
        triggers[args.pattern] = args.macro
    else:
        triggers.pop(args.pattern, None)
    manager.set_triggers(triggers)


def build_parser():
    parser = argparse.ArgumentParser(prog="terminal-plus", description="Terminal macro tool")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="YAML config file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List remote macros").set_defaults(func=cmd_list)

    p = sub.add_parser("show", help="Print a macro")
    p.add_argument("name")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("save", help="Create or update a macro from a file")
    p.add_argument("name")
    p.add_argument("file")
    p.set_defaults(func=cmd_save)

    p = sub.add_parser("delete", help="Delete a macro")
    p.add_argument("name")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("play", help="Replay a macro to stdout")
    p.add_argument("name")
    p.set_defaults(func=cmd_play)

    sub.add_parser("triggers", help="Show the trigger table").set_defaults(func=cmd_triggers)

    sub.add_parser("init-config", help="Write the effective config (defaults for missing keys) to --config")

    p = sub.add_parser("trigger-set", help="Add, change or remove (empty MACRO) a trigger")
    p.add_argument("pattern")
    p.add_argument("macro", nargs="?", default="")
    p.set_defaults(func=cmd_trigger_set)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(
        enable_file_logging=config.enable_file_logging,
        enable_console_logging=config.enable_console_logging,
        debug_mode=config.debug_mode,
    )
    if args.debug:
        set_debug_mode(True)

    if args.command == "init-config":
        save_config(config, args.config)
        print(os.path.abspath(args.config))
        return 0

    if not config.repo:
        log(f"[APP] No 'repo' set in {os.path.abspath(args.config)}")

    manager, host = build_manager(config)
    manager.set_callbacks(on_notify=_print_notification)
    try:
        args.func(manager, args)
    except MacroError as e:
        sys.stderr.write(f"error: [{e.kind}] {e}\n")
        return 1
    finally:
        manager.shutdown()
        host.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
