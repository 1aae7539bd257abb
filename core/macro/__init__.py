"""
Terminal Macro Package
Provides recording, playback, screen triggers and remote storage of macros
"""

from .keys import KEY_TOKENS, TOKEN_NAMES, bytes_for, name_for_bytes

from .script import (
    Macro, MacroScript, Step, TextStep, KeyStep,
    LOGIN_MACRO, PLACEHOLDER_USER, PLACEHOLDER_PASS
)

from .recorder import MacroRecorder, RecorderState

from .player import MacroPlayer, PlaybackState

from .triggers import TriggerEngine, TriggerState

from .store import RemoteMacroStore, IndexEntry, validate_name

from .manager import MacroManager


__all__ = [
    # Key tokens
    'KEY_TOKENS', 'TOKEN_NAMES', 'bytes_for', 'name_for_bytes',

    # Script model
    'Macro', 'MacroScript', 'Step', 'TextStep', 'KeyStep',
    'LOGIN_MACRO', 'PLACEHOLDER_USER', 'PLACEHOLDER_PASS',

    # Recorder
    'MacroRecorder', 'RecorderState',

    # Player
    'MacroPlayer', 'PlaybackState',

    # Triggers
    'TriggerEngine', 'TriggerState',

    # Store
    'RemoteMacroStore', 'IndexEntry', 'validate_name',

    # Manager
    'MacroManager',
]
