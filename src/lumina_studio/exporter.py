"""Write persisted artifacts to disk as an image file plus JSON metadata."""

from __future__ import annotations

import json
import mimetypes
from pathlib import Path
from typing import Any

from lumina_studio.models import Artifact, ImagePayload

_EXTENSION_OVERRIDES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def export_artifact(artifact: Artifact, output_root: Path) -> Path:
    """Write an artifact package to disk and return the output directory.

    Image artifacts produce ``image<ext>``; text artifacts produce
    ``result.txt``. Both get an ``artifact.json`` metadata sidecar.

    Args:
        artifact: Stored artifact to export.
        output_root: Root directory where artifact folders are created.

    Returns:
        The artifact-specific directory containing exported files.
    """
    target_dir = output_root / artifact.artifact_id
    target_dir.mkdir(parents=True, exist_ok=True)

    payload = artifact.payload
    if isinstance(payload, ImagePayload):
        content_path = target_dir / f"image{_extension_for(payload.mime_type)}"
        content_path.write_bytes(payload.data)
    else:
        content_path = target_dir / "result.txt"
        content_path.write_text(payload.text, encoding="utf-8")

    json_path = target_dir / "artifact.json"
    json_path.write_text(
        json.dumps(_metadata(artifact, content_path.name), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    return target_dir


def _extension_for(mime_type: str) -> str:
    return _EXTENSION_OVERRIDES.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"


def _metadata(artifact: Artifact, file_name: str) -> dict[str, Any]:
    """JSON-safe artifact metadata; payload bytes are referenced by file name."""
    metadata = artifact.model_dump(mode="json", exclude={"payload"})
    metadata["payload"] = {"type": artifact.payload.type, "file": file_name}
    if isinstance(artifact.payload, ImagePayload):
        metadata["payload"]["mime_type"] = artifact.payload.mime_type
        metadata["payload"]["size_bytes"] = len(artifact.payload.data)
    return metadata
