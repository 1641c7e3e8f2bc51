from __future__ import annotations

import json
from pathlib import Path
from typing import Any

PROMPT_DIR = Path(__file__).resolve().parent


def _resolve(filename: str) -> Path:
    path = (PROMPT_DIR / filename).resolve()
    if PROMPT_DIR not in path.parents:
        raise RuntimeError(f"Prompt file outside prompt directory: {filename}")
    if not path.is_file():
        raise RuntimeError(f"Prompt file not found: {filename}")
    return path


def load_prompt(filename: str) -> str:
    """Load a prompt text file shipped with the codebase."""

    return _resolve(filename).read_text(encoding="utf-8").strip() + "\n"


def load_json_asset(filename: str) -> Any:
    """Load a JSON asset (tool manifest, assistant list) shipped with the codebase."""

    with _resolve(filename).open(encoding="utf-8") as handle:
        return json.load(handle)
