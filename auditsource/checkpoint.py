from __future__ import annotations
import logging
import os
from typing import Optional
from auditsource.errors import CheckpointError

logger = logging.getLogger(__name__)


class FileCheckpointStore:
    """Single committed cursor value kept as plain UTF-8 text in one file.

    One writer per file. Two readers sharing a path race on load/save.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[str]:
        try:
            if not os.path.exists(self.path):
                self._create_empty()
                logger.info("file for storing last committed value has been created: %s", os.path.abspath(self.path))
                return None
            with open(self.path, "r", encoding="utf-8") as f:
                value = f.read().strip()
        except OSError as e:
            raise CheckpointError(f"cannot load checkpoint from {self.path}: {e}") from e

        if not value:
            logger.info("checkpoint file %s is empty", self.path)
            return None
        logger.info("last value loaded from file: %s", value)
        return value

    def save(self, value: str) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(value)
        except OSError as e:
            raise CheckpointError(f"cannot save checkpoint to {self.path}: {e}") from e

    def reset(self) -> None:
        try:
            self._create_empty()
        except OSError as e:
            raise CheckpointError(f"cannot reset checkpoint {self.path}: {e}") from e

    def _create_empty(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf-8"):
            pass
