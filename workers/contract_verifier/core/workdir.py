"""
Build directories — scoped source and output directories for one job.

``BuildDirs`` is a context manager: entering resets the source directory
(delete-if-exists, recreate) and empties the output directory; leaving
removes the source tree and empties the output directory again, whichever
way the block exits.
"""
import logging
import shutil
from pathlib import Path

from contract_verifier.errors import FatalWorkerError

logger = logging.getLogger(__name__)


def delete_if_exists(path: Path) -> None:
    """Remove a file or directory tree if present."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def delete_dir_contents(path: Path) -> None:
    """Empty *path* but keep the directory (it may be a bind mount)."""
    if not path.is_dir():
        return
    for entry in path.iterdir():
        delete_if_exists(entry)


class BuildDirs:
    """Source and output directories owned by the job currently building."""

    def __init__(self, src_dir: Path, output_dir: Path):
        self.src_dir = Path(src_dir)
        self.output_dir = Path(output_dir)

    def __enter__(self) -> "BuildDirs":
        try:
            delete_if_exists(self.src_dir)
            self.src_dir.mkdir(parents=True)
            self.output_dir.mkdir(parents=True, exist_ok=True)
            delete_dir_contents(self.output_dir)
        except OSError as e:
            raise FatalWorkerError(f"Cannot prepare build directories: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.cleanup()
        return False

    def output_path(self, filename: str) -> Path:
        return self.output_dir / filename

    def cleanup(self) -> None:
        """Remove build artifacts; failures are logged, never raised."""
        logger.debug("Deleting build artifacts")
        try:
            delete_if_exists(self.src_dir)
        except OSError as e:
            logger.error(f"Failed to remove source dir {self.src_dir}: {e}")
        try:
            delete_dir_contents(self.output_dir)
        except OSError as e:
            logger.error(f"Failed to empty output dir {self.output_dir}: {e}")
