from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable


def _parse_line(raw: str) -> tuple[str, str] | None:
    line = raw.strip()
    if not line or line.startswith("#"):
        return None
    if line.lower().startswith("export "):
        line = line[7:].strip()
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def _candidates(extra: Iterable[str]) -> list[Path]:
    paths = [Path(c) for c in extra if c]
    cwd = Path.cwd()
    proj_root = Path(__file__).resolve().parent
    for name in (".env", ".env.local"):
        paths.extend([cwd / name, proj_root / name])
    return paths


def load_dotenv_like(*candidates: str) -> str | None:
    """Minimal .env loader (no dependencies).

    Loads ``KEY=VALUE`` lines from the first readable candidate into
    ``os.environ`` without overriding variables that are already set, so the
    real environment always wins over the file. Must run before
    ``dispatch.config`` is imported. Returns the loaded path or None.
    """
    for path in _candidates(candidates):
        if not path.is_file():
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        for raw in text.splitlines():
            parsed = _parse_line(raw)
            if parsed is not None:
                os.environ.setdefault(*parsed)
        return str(path)
    return None
