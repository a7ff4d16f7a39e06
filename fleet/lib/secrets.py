"""API keys from the environment, then local untracked env files."""

import logging
import os
import stat
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

LOCAL_SECRET_FILES = (".env.local", "secrets/local.env")

_warned: set[Path] = set()


def _check_permissions(path: Path) -> None:
    if path in _warned:
        return
    try:
        mode = path.stat().st_mode
    except OSError:
        return
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        _warned.add(path)
        logger.warning(
            f"{path} is readable by group or others (mode {stat.S_IMODE(mode):o}); run chmod 600 {path}"
        )


def local_secrets(cwd: Path | None = None) -> dict[str, str]:
    """Merged values of the local secret files. Earlier files win."""
    base = cwd or Path.cwd()
    merged: dict[str, str] = {}
    for rel in LOCAL_SECRET_FILES:
        path = base / rel
        if not path.is_file():
            continue
        _check_permissions(path)
        for key, value in dotenv_values(path).items():
            if value and key not in merged:
                merged[key] = value
    return merged


def resolve(*keys: str, cwd: Path | None = None) -> str | None:
    """First non-empty value for any of `keys`, environment before files."""
    for key in keys:
        value = os.environ.get(key, "").strip()
        if value:
            return value
    values = local_secrets(cwd)
    for key in keys:
        value = (values.get(key) or "").strip()
        if value:
            return value
    return None
