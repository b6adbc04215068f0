"""Durable local store for payments that reached the gateway but not the ledger.

One JSON file per gateway order id. Writes go to a temporary file first and
are moved into place, so a crash mid-write never leaves a half-written record.
"""

import json
import logging
import os
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from app import config

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PendingPaymentRecord:
    order_id: str
    payment_id: str
    signature: str
    amount: int
    payment_type: str
    period_index: Optional[int] = None
    enrollment_id: Optional[str] = None
    created_at: str = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingPaymentRecord":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


class PendingPaymentStore:
    def __init__(self, root: str = None):
        self.root = Path(root or config.PENDING_PAYMENTS_DIR)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, order_id: str) -> Path:
        key = _SAFE_KEY.sub("_", order_id.strip())
        if not key:
            raise ValueError("order_id must not be empty")
        return self.root / f"{key}.json"

    def save(self, record: PendingPaymentRecord) -> None:
        path = self._path(record.order_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(asdict(record), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        logger.info("Saved pending payment order=%s", record.order_id)

    def get(self, order_id: str) -> Optional[PendingPaymentRecord]:
        path = self._path(order_id)
        if not path.exists():
            return None
        return self._load(path)

    def _load(self, path: Path) -> Optional[PendingPaymentRecord]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            record = PendingPaymentRecord.from_dict(data)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Unreadable pending payment %s: %s", path.name, exc)
            return None
        if not record.order_id or not record.payment_id:
            logger.error("Pending payment %s has no gateway ids", path.name)
            return None
        return record

    def list(self) -> List[PendingPaymentRecord]:
        records = []
        for path in sorted(self.root.glob("*.json")):
            record = self._load(path)
            if record is not None:
                records.append(record)
        return records

    def delete(self, order_id: str) -> bool:
        try:
            self._path(order_id).unlink()
        except FileNotFoundError:
            return False
        logger.info("Removed pending payment order=%s", order_id)
        return True


class InflightOrders:
    """Order ids with a verification call outstanding in this process."""

    def __init__(self):
        self._orders = set()
        self._lock = threading.Lock()

    def claim(self, order_id: str) -> bool:
        with self._lock:
            if order_id in self._orders:
                return False
            self._orders.add(order_id)
            return True

    def release(self, order_id: str) -> None:
        with self._lock:
            self._orders.discard(order_id)
