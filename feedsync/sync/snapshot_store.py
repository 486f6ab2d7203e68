"""
File-backed storage for the feed baseline and the last diff.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from .models import EntitySnapshot

logger = logging.getLogger(__name__)


class StateFileError(Exception):
    """A persisted state file exists but cannot be read. Fatal for the run."""
    pass


def atomic_write_json(path: Path, data: Any) -> None:
    """
    Replace `path` with the JSON encoding of `data` in a single rename.

    The temp file lives in the same directory so os.replace stays atomic.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_json(path: Path) -> Any:
    """Read a JSON state file. Raises StateFileError if it is corrupt."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise StateFileError(f"State file {path} is corrupt: {e}") from e


class SnapshotStore:
    """
    Persists the FeedBaseline: the last fully reconciled feed.

    The baseline is only ever replaced as a whole, after a run completes.
    """

    def __init__(
        self,
        baseline_path: Union[str, Path],
        diff_path: Optional[Union[str, Path]] = None,
    ):
        self.baseline_path = Path(baseline_path)
        self.diff_path = Path(diff_path) if diff_path else None

    def exists(self) -> bool:
        return self.baseline_path.exists()

    def saved_at(self) -> Optional[datetime]:
        if not self.exists():
            return None
        return datetime.fromtimestamp(
            self.baseline_path.stat().st_mtime, tz=timezone.utc
        )

    def load(self) -> Optional[List[EntitySnapshot]]:
        """
        Load the baseline.

        Returns:
            The saved entities, or None if no baseline exists yet

        Raises:
            StateFileError: If the file is corrupt or has the wrong shape
        """
        if not self.exists():
            return None

        data = read_json(self.baseline_path)
        if not isinstance(data, list):
            raise StateFileError(
                f"Baseline {self.baseline_path} must hold a JSON list"
            )

        try:
            return [EntitySnapshot.from_dict(item) for item in data]
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise StateFileError(
                f"Baseline {self.baseline_path} has a malformed entry: {e}"
            ) from e

    def replace(self, entities: List[EntitySnapshot]) -> None:
        """Atomically replace the whole baseline."""
        atomic_write_json(
            self.baseline_path,
            [e.to_dict() for e in entities if e.id],
        )
        logger.info(f"Saved baseline with {len(entities)} products to {self.baseline_path}")

    def save_diff(self, entities: List[EntitySnapshot]) -> None:
        if self.diff_path is None:
            return
        atomic_write_json(self.diff_path, [e.to_dict() for e in entities])
        logger.info(f"Saved diff to {self.diff_path}")
