"""JSON artifact persistence with merge-by-id partial regeneration.

Every stage can be rerun for a subset of scenes. The freshly computed scene
records are merged into whatever was stored before: scenes that were not
reprocessed keep their previous record untouched, so their serialized form
stays byte-identical.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ArtifactStoreError(Exception):
    """Error reading or writing a persisted artifact."""

    pass


class HasId(Protocol):
    id: str


S = TypeVar("S", bound=HasId)


def load_artifact(path: Path, model: type[M]) -> M:
    """Load and validate a JSON artifact.

    Args:
        path: Artifact file path.
        model: Pydantic model class to validate against.

    Returns:
        Parsed model instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        ArtifactStoreError: If the file is not valid JSON or fails validation.
    """
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ArtifactStoreError(f"Invalid JSON in {path}: {e}") from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ArtifactStoreError(f"Invalid {model.__name__} in {path}: {e}") from e


def load_optional(path: Path, model: type[M]) -> M | None:
    """Load an artifact if it exists; None when it has not been generated yet."""
    if not path.exists():
        return None
    return load_artifact(path, model)


def save_artifact(artifact: BaseModel, path: Path) -> Path:
    """Write an artifact as camelCase JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    # ArtifactModel.to_json handles aliasing and None-dropping
    artifact.to_json(path)  # type: ignore[attr-defined]
    logger.info(f"Saved {type(artifact).__name__} -> {path}")
    return path


def merge_by_id(
    existing: Iterable[S],
    updated: Iterable[S],
    order: Iterable[str] | None = None,
) -> list[S]:
    """Merge freshly computed scene records into previously stored ones.

    Records in ``updated`` replace records with the same id; every other
    stored record is kept as the same object. The result follows ``order``
    (scene declaration order) when given; ids outside ``order`` are appended
    in the order first seen.

    Args:
        existing: Previously stored records.
        updated: Newly computed records.
        order: Scene ids in declaration order.

    Returns:
        Merged list of records.
    """
    merged: dict[str, S] = {}
    for record in existing:
        merged[record.id] = record
    for record in updated:
        merged[record.id] = record

    if order is None:
        return list(merged.values())

    result: list[S] = []
    seen: set[str] = set()
    for scene_id in order:
        if scene_id in merged and scene_id not in seen:
            result.append(merged[scene_id])
            seen.add(scene_id)
    for scene_id, record in merged.items():
        if scene_id not in seen:
            result.append(record)
    return result


def parse_scene_filter(value: str | Iterable[str] | None) -> set[str] | None:
    """Normalize a scene filter ("hook,intro" or an iterable) to a set of ids."""
    if value is None:
        return None
    if isinstance(value, str):
        ids = {part.strip() for part in value.split(",") if part.strip()}
    else:
        ids = {str(part).strip() for part in value if str(part).strip()}
    return ids or None
