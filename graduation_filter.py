"""
Graduation Filter - decides which PumpPortal messages are pump.fun graduations
and suppresses repeats of the same graduation
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MIGRATE_TX_TYPE = 'migrate'
PUMP_AMM_POOL = 'pump-amm'

DedupKey = Tuple[str, Optional[str]]


class FeedVerdict(Enum):
    ACCEPTED = 'accepted'
    OTHER_VENUE = 'other_venue'        # a migration, but not to pump-amm
    NOT_GRADUATION = 'not_graduation'
    PARSE_ERROR = 'parse_error'


@dataclass
class Classification:
    verdict: FeedVerdict
    message: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.verdict is FeedVerdict.ACCEPTED


def is_graduation(message: Any) -> bool:
    """txType == migrate AND non-empty mint AND pool == pump-amm"""
    if not isinstance(message, dict):
        return False
    mint = message.get('mint')
    return (
        message.get('txType') == MIGRATE_TX_TYPE
        and isinstance(mint, str) and bool(mint)
        and message.get('pool') == PUMP_AMM_POOL
    )


def classify(raw: Union[str, bytes, Dict[str, Any]]) -> Classification:
    """Decode one feed frame and classify it"""
    if isinstance(raw, dict):
        message = raw
    else:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            return Classification(FeedVerdict.PARSE_ERROR, error=str(e))

    if not isinstance(message, dict):
        return Classification(FeedVerdict.NOT_GRADUATION)

    if is_graduation(message):
        return Classification(FeedVerdict.ACCEPTED, message)

    if message.get('txType') == MIGRATE_TX_TYPE:
        return Classification(FeedVerdict.OTHER_VENUE, message)

    return Classification(FeedVerdict.NOT_GRADUATION, message)


def dedup_key(message: Dict[str, Any]) -> DedupKey:
    """(mint, reported timestamp). A missing timestamp collapses to mint-only."""
    timestamp = message.get('timestamp')
    return (message['mint'], None if timestamp in (None, '') else str(timestamp))


class DedupGate:
    """Set of graduation keys seen by this process.

    Unbounded by default. With max_keys set, the oldest keys are forgotten first.
    Only ever touched from the feed reader, so check-then-mark needs no lock.
    """

    def __init__(self, max_keys: Optional[int] = None):
        self.max_keys = max_keys
        self._seen: 'OrderedDict[DedupKey, None]' = OrderedDict()

    def is_duplicate(self, key: DedupKey) -> bool:
        return key in self._seen

    def mark_seen(self, key: DedupKey):
        self._seen[key] = None
        self._seen.move_to_end(key)
        if self.max_keys is not None:
            while len(self._seen) > self.max_keys:
                self._seen.popitem(last=False)

    def check_and_mark(self, key: DedupKey) -> bool:
        """True when the key is new (and is now marked), False for a repeat"""
        if self.is_duplicate(key):
            return False
        self.mark_seen(key)
        return True

    def clear(self):
        self._seen.clear()

    def __len__(self):
        return len(self._seen)
