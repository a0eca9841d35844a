"""Persistence of the pipeline's JSON artifacts."""

from narrasync.store.artifacts import (
    ArtifactStoreError,
    load_artifact,
    load_optional,
    merge_by_id,
    parse_scene_filter,
    save_artifact,
)

__all__ = [
    "ArtifactStoreError",
    "load_artifact",
    "load_optional",
    "merge_by_id",
    "parse_scene_filter",
    "save_artifact",
]
