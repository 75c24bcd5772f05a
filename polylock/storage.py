"""
JSON snapshot export for the dashboard process.
"""
import json
import os
import tempfile
from pathlib import Path

from .utils.logger import get_logger

logger = get_logger("storage")


class SnapshotStore:
    """Writes the worker snapshot atomically (temp file + replace)."""

    def __init__(self, path: str):
        self.path = Path(path)

    def initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, snapshot: dict) -> bool:
        """Returns False when the write failed; failures are never fatal."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".snapshot-", suffix=".json")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(snapshot, f, indent=2, default=str)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Snapshot write failed: {e}", extra={"path": str(self.path)})
            return False
        return True

    def read(self) -> dict:
        try:
            with open(self.path) as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Snapshot read failed: {e}", extra={"path": str(self.path)})
            return {}
