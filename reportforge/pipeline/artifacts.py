"""Per-request artifact lifecycle.

Every working copy, temp image and output file created while serving
one request lives under the directory of a single ``ArtifactScope``.
``cleanup`` removes it and may be called any number of times from any
exit path. LibreOffice session profiles are owned by each invocation.
"""

import logging
import secrets
import shutil
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def unique_name(prefix: str, suffix: str = "") -> str:
    """Collision-resistant file name: timestamp plus random suffix."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{suffix}"


def remove_path(path: Path) -> bool:
    """Delete a file or directory tree; failures are logged, never raised.

    Returns:
        True if nothing remains at ``path``.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove artifact {path}: {e}")
        return False
    return True


class ArtifactScope:
    """Owns the temporary filesystem objects of one request.

    Example:
        ```python
        scope = ArtifactScope(storage.work, label="gen")
        working = scope.path("working.docx")
        try:
            ...
        finally:
            scope.cleanup()
        ```
    """

    def __init__(self, work_root: Path, label: str = "req") -> None:
        self.root = Path(work_root) / unique_name(label)
        self.root.mkdir(parents=True, exist_ok=False)
        self._closed = False
        logger.debug(f"Artifact scope opened: {self.root}")

    @property
    def closed(self) -> bool:
        return self._closed

    def path(self, name: str) -> Path:
        """A path inside the scope directory (removed with the scope)."""
        return self.root / name

    def mkdir(self, name: str) -> Path:
        directory = self.root / name
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def cleanup(self) -> None:
        """Remove the scope directory and everything in it."""
        if self._closed:
            return
        self._closed = True
        remove_path(self.root)
        logger.debug(f"Artifact scope cleaned: {self.root}")

    def __enter__(self) -> "ArtifactScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
