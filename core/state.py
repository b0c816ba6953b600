"""
Checkpoint persistence for incremental fetch.

Stores the highest UID the filter pass has processed, so the next run only
fetches newer inbox messages. UIDs are only comparable within one
UIDVALIDITY epoch; a different epoch invalidates the checkpoint.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_FILE = Path("~/.config/imap-filter/state.json").expanduser()


class CheckpointStore:
    """
    Handles persistence of the last processed UID.

    Attributes:
        filename: Path to the state JSON file
        state: Current state dictionary

    Example:
        checkpoint = CheckpointStore("state.json")
        last_uid = checkpoint.load_checkpoint(uid_validity="12345")
        # ... process messages above last_uid ...
        checkpoint.save_checkpoint(highest_uid, uid_validity="12345")
    """

    def __init__(self, filename: os.PathLike = DEFAULT_CHECKPOINT_FILE):
        self.filename = Path(filename).expanduser()
        self.state = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load state from file, or return default state if not found."""
        if self.filename.exists():
            try:
                with open(self.filename, "r") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.error(f"Ignoring malformed state file {self.filename}")
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse state file {self.filename}: {e}")
            except OSError as e:
                logger.error(f"Failed to load state file {self.filename}: {e}")
        return self._default_state()

    def _default_state(self) -> Dict[str, Any]:
        return {
            "last_uid": None,
            "uid_validity": None,
            "last_run": None,
        }

    def load_checkpoint(self, uid_validity: Optional[str] = None) -> Optional[int]:
        """
        Return the last processed UID, or None when there is none.

        Args:
            uid_validity: Current UIDVALIDITY; a mismatch discards the checkpoint
        """
        last_uid = self.state.get("last_uid")
        if last_uid is None:
            return None
        stored_validity = self.state.get("uid_validity")
        if uid_validity and stored_validity and str(stored_validity) != str(uid_validity):
            logger.warning(
                f"UIDVALIDITY changed ({stored_validity} -> {uid_validity}), ignoring checkpoint"
            )
            return None
        try:
            return int(last_uid)
        except (TypeError, ValueError):
            logger.error(f"Invalid UID in state file {self.filename}: {last_uid!r}")
            return None

    def save_checkpoint(self, uid: int, uid_validity: Optional[str] = None) -> None:
        """
        Persist the last processed UID.

        Raises:
            OSError: If the state file cannot be written
        """
        self.state["last_uid"] = int(uid)
        if uid_validity:
            self.state["uid_validity"] = str(uid_validity)
        self.state["last_run"] = datetime.now().isoformat()

        self.filename.parent.mkdir(parents=True, exist_ok=True)
        with open(self.filename, "w") as f:
            json.dump(self.state, f, indent=2)
        logger.debug(f"Saved checkpoint UID {uid} to {self.filename}")

    def get_last_run(self) -> Optional[str]:
        """Get the timestamp of the last run."""
        return self.state.get("last_run")

    def clear(self) -> None:
        """Clear the state file (reset to defaults)."""
        self.state = self._default_state()
        if self.filename.exists():
            self.filename.unlink()
