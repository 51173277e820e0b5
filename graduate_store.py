"""
Graduate Store - newest-first graduation records persisted to one JSON file
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from config import GRADUATES_FILE, MAX_GRADUATES
from models import GraduationRecord

logger = logging.getLogger(__name__)


class GraduateStore:
    """Ordered collection of GraduationRecord keyed by mint.

    Every mutation re-writes the file. A failed write is logged and the
    in-memory list stays authoritative.
    """

    def __init__(self, path: Optional[str] = GRADUATES_FILE, max_records: Optional[int] = MAX_GRADUATES):
        self.path = Path(path) if path else None
        self.max_records = max_records
        self._records: List[GraduationRecord] = []
        self._by_mint: Dict[str, GraduationRecord] = {}
        self.persist_failures = 0

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Read the persisted snapshot once at startup"""
        if not self.path or not self.path.exists():
            return 0
        try:
            with open(self.path, 'r') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {self.path}: {e} - starting empty")
            return 0

        records = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                records.append(GraduationRecord.from_dict(entry))
            except (ValueError, AttributeError) as e:
                logger.warning(f"Skipping bad graduate entry: {e}")
        self._set(records)
        logger.info(f"📂 Loaded {len(self._records)} graduates from {self.path}")
        return len(self._records)

    def _persist(self) -> bool:
        if not self.path:
            return True
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w') as f:
                json.dump([r.to_dict() for r in self._records], f)
            os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            self.persist_failures += 1
            logger.warning(f"⚠️ Failed to persist graduates to {self.path}: {e}")
            return False

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def _set(self, records: Iterable[GraduationRecord]):
        self._records = []
        self._by_mint = {}
        for record in records:
            if record.mint in self._by_mint:
                continue
            self._records.append(record)
            self._by_mint[record.mint] = record
        self._enforce_retention()

    def _enforce_retention(self):
        if self.max_records is None:
            return
        while len(self._records) > self.max_records:
            evicted = self._records.pop()
            self._by_mint.pop(evicted.mint, None)
            logger.debug(f"Evicted oldest graduate {evicted.mint[:8]}...")

    def insert(self, record: GraduationRecord) -> bool:
        """Prepend a record. False when the mint is already stored."""
        if record.mint in self._by_mint:
            return False
        self._records.insert(0, record)
        self._by_mint[record.mint] = record
        self._enforce_retention()
        self._persist()
        return True

    def update(self, mint: str, patch: Optional[Dict[str, Any]] = None) -> Optional[GraduationRecord]:
        """Apply attribute changes in place and persist.

        Callers that already mutated the record pass no patch; the call then
        just persists. Returns None for an unknown mint.
        """
        record = self._by_mint.get(mint)
        if record is None:
            return None
        for key, value in (patch or {}).items():
            if not hasattr(record, key):
                raise AttributeError(f"GraduationRecord has no field '{key}'")
            setattr(record, key, value)
        self._persist()
        return record

    def replace_all(self, records: Iterable[GraduationRecord]) -> int:
        self._set(records)
        self._persist()
        return len(self._records)

    def clear(self):
        self._records = []
        self._by_mint = {}
        self._persist()

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, mint: str) -> Optional[GraduationRecord]:
        return self._by_mint.get(mint)

    def list(self, limit: Optional[int] = None) -> List[GraduationRecord]:
        if limit is None:
            return list(self._records)
        return self._records[:max(limit, 0)]

    def __contains__(self, mint: str) -> bool:
        return mint in self._by_mint

    def __len__(self) -> int:
        return len(self._records)
