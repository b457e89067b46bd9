from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Глобальный конфиг движка сессий."""

    history_path: str = Field(default_factory=lambda: str(Path.home() / ".shellhost-history"))
    history_limit: int = Field(default=1000, ge=1)

    default_timeout_ms: int = Field(default=30000, ge=1)
    close_grace_sec: float = Field(default=1.0, ge=0)
    probe_timeout_sec: float = Field(default=2.0, gt=0)
    probe_version: bool = True

    cols: int = Field(default=120, ge=1)
    rows: int = Field(default=30, ge=1)
    # Restricted | AllSigned | RemoteSigned | Unrestricted | Bypass (PowerShell only)
    execution_policy: str = "RemoteSigned"

    slow_command_ms: int = 50
    scrollback_chars: int = Field(default=1_000_000, ge=0)

    # Overrides the built-in candidate list when set
    shell_candidates: Optional[List[str]] = None


def config_dir() -> Path:
    return Path.home() / ".shellhost"


def config_path() -> Path:
    return config_dir() / "config.json"


def load_config(path: Optional[Path] = None) -> EngineConfig:
    path = path or config_path()
    if not path.exists():
        return EngineConfig()
    data = json.loads(path.read_text(encoding="utf-8"))
    return EngineConfig(**data)


def save_config(cfg: EngineConfig, path: Optional[Path] = None) -> None:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cfg.model_dump_json(indent=2), encoding="utf-8")
