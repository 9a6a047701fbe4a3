"""JSON-backed record of what the bot believes is listed.

The file maps a decimal token id to either a bare price (legacy) or a
structured entry. Entries that decode to neither are carried through
untouched so a save never loses data written by something else.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .exceptions import StoreError
from .models import RentalRecord

logger = logging.getLogger(__name__)


class TrackingStore:
    """token_id -> RentalRecord, loaded at pass start and saved at pass end."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._records: Dict[int, RentalRecord] = {}
        self._passthrough: Dict[str, Any] = {}

    def load(self) -> None:
        """Replace in-memory state with the file's contents.

        Raises:
            StoreError: if the file exists but is not a readable JSON object
        """
        records: Dict[int, RentalRecord] = {}
        passthrough: Dict[str, Any] = {}

        if not self.path.exists():
            logger.info(f"No tracking file at {self.path}, starting empty")
            self._records, self._passthrough = records, passthrough
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read tracking file: {e}", path=str(self.path)) from e

        if not isinstance(raw, dict):
            raise StoreError("Tracking file is not a JSON object", path=str(self.path))

        for key, value in raw.items():
            try:
                token_id = int(key)
            except ValueError:
                passthrough[key] = value
                continue
            record = RentalRecord.from_stored(token_id, value)
            if record is None:
                logger.warning(f"Keeping unrecognised entry for token {key} as is")
                passthrough[key] = value
            else:
                records[token_id] = record

        self._records, self._passthrough = records, passthrough
        logger.info(f"Loaded {len(records)} tracked records from {self.path}")

    def save(self) -> None:
        """Write the store atomically (temp file + rename)."""
        data: Dict[str, Any] = dict(self._passthrough)
        for token_id, record in self._records.items():
            data[str(token_id)] = record.to_stored()

        directory = self.path.parent if str(self.path.parent) else Path(".")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"Cannot write tracking file: {e}", path=str(self.path)) from e

        logger.debug(f"Saved {len(self._records)} records to {self.path}")

    def get(self, token_id: int) -> Optional[RentalRecord]:
        return self._records.get(token_id)

    def put(self, record: RentalRecord) -> None:
        self._records[record.token_id] = record
        # A structured record supersedes whatever raw value was kept for the id
        self._passthrough.pop(str(record.token_id), None)

    def records(self) -> List[RentalRecord]:
        """Records in store order."""
        return list(self._records.values())

    def __iter__(self) -> Iterator[RentalRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._records
