"""Global configuration — XDG paths, env vars, probe defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from netpolprobe.errors import ValidationError

DEFAULT_WORKERS = 8


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "netpolprobe"
    return Path.home() / ".config" / "netpolprobe"


def _env_number(name: str, kind: type[int] | type[float]) -> int | float | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class ProbeSettings:
    """Application-wide configuration for building and probing truth tables."""

    config_dir: Path = field(default_factory=_default_config_dir)
    policy_dirs: list[Path] = field(default_factory=list)
    workers: int = DEFAULT_WORKERS
    job_timeout: float = 10.0
    retries: int = 2
    backoff: float = 0.5
    kube_context: str = ""

    @classmethod
    def load(cls) -> ProbeSettings:
        """Load settings from environment variables with XDG defaults.

        Raises ValidationError when a numeric variable does not parse.
        """
        settings = cls()

        env_workers = _env_number("NETPOLPROBE_WORKERS", int)
        if env_workers is not None:
            settings.workers = max(1, int(env_workers))

        env_timeout = _env_number("NETPOLPROBE_JOB_TIMEOUT", float)
        if env_timeout is not None:
            settings.job_timeout = env_timeout

        env_retries = _env_number("NETPOLPROBE_RETRIES", int)
        if env_retries is not None:
            settings.retries = max(0, int(env_retries))

        env_backoff = _env_number("NETPOLPROBE_BACKOFF", float)
        if env_backoff is not None:
            settings.backoff = env_backoff

        settings.kube_context = os.environ.get("NETPOLPROBE_KUBE_CONTEXT", "")

        # Add config dir's policies/ subdirectory if it exists
        policies_dir = settings.config_dir / "policies"
        if policies_dir.is_dir():
            settings.policy_dirs.append(policies_dir)

        return settings
