"""Worker profiles: markdown files in .fleet/agents/ with YAML frontmatter."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from fleet.lib import paths

logger = logging.getLogger(__name__)


@dataclass
class Profile:
    name: str
    model: str | None
    path: Path
    description: str | None = None


def parse_frontmatter(text: str) -> dict:
    if not text.startswith("---"):
        return {}
    parts = text.split("---", 2)
    if len(parts) < 3:
        return {}
    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError:
        return {}
    return data if isinstance(data, dict) else {}


def load_profile(path: Path) -> Profile | None:
    try:
        meta = parse_frontmatter(path.read_text())
    except OSError as e:
        logger.debug(f"Cannot read profile {path}: {e}")
        return None
    model = meta.get("model")
    return Profile(
        name=str(meta.get("name") or path.stem),
        model=str(model).strip() if model else None,
        path=path,
        description=meta.get("description"),
    )


def find_profile(root: Path | None, name: str) -> Profile | None:
    """Profile by file stem, else by frontmatter `name`."""
    directory = paths.profiles_dir(root)
    direct = directory / f"{name}.md"
    if direct.is_file():
        return load_profile(direct)
    if not directory.is_dir():
        return None
    for path in sorted(directory.glob("*.md")):
        profile = load_profile(path)
        if profile is not None and profile.name == name:
            return profile
    return None
