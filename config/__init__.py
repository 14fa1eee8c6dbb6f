"""
Scene document loading.

Scene documents are JSON files loaded whole before anything validates them.
Bundled scenes live in ``config/scenes/<scene_id>.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from constants import BUNDLED_SCENES_DIR
from exceptions import SchemaError

logger = logging.getLogger(__name__)


def load_scene_document(path: str | Path) -> dict[str, Any]:
    """
    Read a scene document from disk.

    Raises:
        SchemaError: the file is missing, unreadable, not JSON, or not an object
    """
    scene_path = Path(path)
    if not scene_path.exists():
        raise SchemaError("Scene document not found", str(scene_path))

    try:
        with open(scene_path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Scene document is not valid JSON: {e.msg} at line {e.lineno}", str(scene_path)) from e
    except OSError as e:
        raise SchemaError(f"Failed to read scene document: {e}", str(scene_path)) from e

    if not isinstance(document, dict):
        raise SchemaError("Scene document must be a JSON object", str(scene_path))

    logger.info("Loaded scene document %s (%d nodes)", scene_path.name, len(document.get("nodes") or []))
    return document


def bundled_scene_path(scene_id: str) -> Path:
    """Path of a bundled scene; raises SchemaError for any id not bundled."""
    if scene_id not in get_bundled_scene_ids():
        raise SchemaError(f"Unknown bundled scene: {scene_id}")
    return BUNDLED_SCENES_DIR / f"{scene_id}.json"


def get_bundled_scene_ids() -> list[str]:
    return sorted(p.stem for p in BUNDLED_SCENES_DIR.glob("*.json"))
