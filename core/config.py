"""
Application configuration (data/config.yaml)
"""

from __future__ import annotations
from typing import List, Optional
from dataclasses import dataclass, field
import os

import yaml

from utils.logger import log

DEFAULT_CONFIG_FILE = "data/config.yaml"


@dataclass
class AppConfig:
    """Settings for the remote store, the bridge and the macro engine"""
    api_base_url: str = "https://api.github.com"
    repo: str = ""
    macros_root: str = "macros"
    branch: Optional[str] = None
    token_env: str = "TERMINAL_PLUS_TOKEN"
    storage_path: str = "data/storage.json"
    step_delay_ms: int = 50
    trigger_cooldown_s: float = 3.0
    storage_timeout_s: float = 5.0
    api_timeout_s: float = 15.0
    writers: List[str] = field(default_factory=list)

    # Logging
    enable_file_logging: bool = False
    enable_console_logging: bool = True
    debug_mode: bool = True

    def to_dict(self) -> dict:
        return {
            "api_base_url": self.api_base_url,
            "repo": self.repo,
            "macros_root": self.macros_root,
            "branch": self.branch,
            "token_env": self.token_env,
            "storage_path": self.storage_path,
            "step_delay_ms": self.step_delay_ms,
            "trigger_cooldown_s": self.trigger_cooldown_s,
            "storage_timeout_s": self.storage_timeout_s,
            "api_timeout_s": self.api_timeout_s,
            "writers": list(self.writers),
            "enable_file_logging": self.enable_file_logging,
            "enable_console_logging": self.enable_console_logging,
            "debug_mode": self.debug_mode,
        }

    @staticmethod
    def from_dict(data: dict) -> 'AppConfig':
        defaults = AppConfig()
        return AppConfig(
            api_base_url=data.get("api_base_url", defaults.api_base_url),
            repo=data.get("repo", defaults.repo),
            macros_root=str(data.get("macros_root", defaults.macros_root)).strip("/"),
            branch=data.get("branch", defaults.branch),
            token_env=data.get("token_env", defaults.token_env),
            storage_path=data.get("storage_path", defaults.storage_path),
            step_delay_ms=int(data.get("step_delay_ms", defaults.step_delay_ms)),
            trigger_cooldown_s=float(data.get("trigger_cooldown_s", defaults.trigger_cooldown_s)),
            storage_timeout_s=float(data.get("storage_timeout_s", defaults.storage_timeout_s)),
            api_timeout_s=float(data.get("api_timeout_s", defaults.api_timeout_s)),
            writers=list(data.get("writers") or []),
            enable_file_logging=bool(data.get("enable_file_logging", defaults.enable_file_logging)),
            enable_console_logging=bool(data.get("enable_console_logging", defaults.enable_console_logging)),
            debug_mode=bool(data.get("debug_mode", defaults.debug_mode)),
        )

    def token_from_env(self) -> Optional[str]:
        return os.environ.get(self.token_env) or None

    def can_write(self, identity: str) -> bool:
        """Write predicate for the remote store: empty list allows everyone"""
        if not self.writers:
            return True
        return identity in self.writers


def load_config(path: str = DEFAULT_CONFIG_FILE) -> AppConfig:
    """Load config from YAML; a missing file yields the defaults"""
    if not os.path.exists(path):
        log(f"[CONFIG] {path} not found, using defaults")
        return AppConfig()

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")

    log(f"[CONFIG] Loaded {path}")
    return AppConfig.from_dict(data)


def save_config(config: AppConfig, path: str = DEFAULT_CONFIG_FILE):
    """Write config back to YAML"""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    log(f"[CONFIG] Saved {path}")
