# history.py
"""
Bill history repositories

The tariff engine never writes history itself: the processor and the CLI get a
BillHistory injected and append the bills they compute.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from config import INFLUX_BUCKET, INFLUX_ORG, TIMEZONE_MOROCCO, write_influx
from pricing import BillBreakdown

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    recorded_at: datetime
    bill: BillBreakdown


class BillHistory(ABC):

    @abstractmethod
    def append(self, bill: BillBreakdown, recorded_at: Optional[datetime] = None) -> HistoryEntry:
        """Store a bill, stamping it with an id and a timestamp."""

    @abstractmethod
    def recent(self, n: int) -> List[HistoryEntry]:
        """Return up to n entries, newest first."""

    @staticmethod
    def _new_entry(bill, recorded_at):
        return HistoryEntry(
            id=uuid.uuid4().hex,
            recorded_at=recorded_at or datetime.now(TIMEZONE_MOROCCO),
            bill=bill,
        )


class InMemoryBillHistory(BillHistory):
    """Keeps the newest `limit` bills in process memory."""

    def __init__(self, limit: int = 12):
        if limit < 1:
            raise ValueError(f"History limit must be >= 1, got {limit}")
        self._entries = deque(maxlen=limit)

    def append(self, bill, recorded_at=None):
        entry = self._new_entry(bill, recorded_at)
        self._entries.appendleft(entry)
        return entry

    def recent(self, n):
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        return list(self._entries)[:n]

    def __len__(self):
        return len(self._entries)


class InfluxBillHistory(BillHistory):
    """
    Stores bills in the InfluxDB measurement 'bills'.

    Summary values are written as numeric fields for Grafana, the complete
    breakdown as a JSON string field so recent() can rebuild it.
    """

    MEASUREMENT = "bills"

    def __init__(self, influx_client, lookback: str = "-400d"):
        self.influx_client = influx_client
        self.lookback = lookback

    def append(self, bill, recorded_at=None):
        entry = self._new_entry(bill, recorded_at)
        fields = {
            "consumption": bill.consumption,
            "consumption_ht": bill.consumption_charge.excl_tax,
            "fixed_fee_ht": bill.fixed_fee.excl_tax,
            "tppan_ht": bill.surtax.excl_tax,
            "total_ht": bill.totals.excl_tax,
            "total_vat": bill.totals.tax,
            "total_ttc": bill.totals.incl_tax,
            "tppan_exempted": int(bill.surtax.is_exempted),
            "breakdown": json.dumps(bill.to_dict(), ensure_ascii=False),
        }
        tags = {"provider": bill.provider, "mode": bill.mode.value, "entry_id": entry.id}
        if not write_influx(self.influx_client, self.MEASUREMENT, fields, tags, timestamp=entry.recorded_at):
            raise RuntimeError(f"Could not store bill {entry.id} in InfluxDB")
        logger.info(f"Stored bill {entry.id} ({bill.provider}, {bill.consumption:g} kWh) in InfluxDB")
        return entry

    def recent(self, n):
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        if n == 0:
            return []

        flux = f"""
from(bucket: "{INFLUX_BUCKET}")
  |> range(start: {self.lookback})
  |> filter(fn: (r) => r["_measurement"] == "{self.MEASUREMENT}")
  |> filter(fn: (r) => r["_field"] == "breakdown")
  |> group()
  |> sort(columns: ["_time"], desc: true)
  |> limit(n: {int(n)})
"""
        tables = self.influx_client.query_api().query(flux, org=INFLUX_ORG)
        entries = []
        for table in tables:
            for record in table.records:
                try:
                    bill = BillBreakdown.from_dict(json.loads(record.get_value()))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping unreadable bill record at {record.get_time()}: {e}")
                    continue
                entries.append(HistoryEntry(
                    id=record.values.get("entry_id", ""),
                    recorded_at=record.get_time(),
                    bill=bill,
                ))
        entries.sort(key=lambda e: e.recorded_at, reverse=True)
        return entries[:n]
