"""
Artifact storage for finished job outputs.

Workers write artifacts into the storage directory; downloads resolve a
result's file name to a path inside that directory. Names that would
escape the directory are rejected.
"""

import logging
import mimetypes
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Formats the standard mimetypes table may not know
_EXTRA_MEDIA_TYPES = {
    ".m4r": "audio/mp4",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
}


class ArtifactStorage:
    """Resolves artifact names to files under a base directory."""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path).resolve()

    def ensure_directory(self) -> None:
        """Create the storage directory if it doesn't exist."""
        self.base_path.mkdir(parents=True, exist_ok=True)

    def resolve(self, file_name: str) -> Optional[Path]:
        """
        Full path for an artifact name.

        Returns None for empty names or names resolving outside base_path.
        """
        if not file_name:
            return None

        candidate = (self.base_path / file_name).resolve()
        if candidate != self.base_path and self.base_path not in candidate.parents:
            logger.warning(
                "Rejected artifact path outside storage",
                extra={"file_name": file_name},
            )
            return None
        return candidate

    @staticmethod
    def media_type(file_name: str) -> str:
        suffix = Path(file_name).suffix.lower()
        if suffix in _EXTRA_MEDIA_TYPES:
            return _EXTRA_MEDIA_TYPES[suffix]
        guessed, _ = mimetypes.guess_type(file_name)
        return guessed or "application/octet-stream"
