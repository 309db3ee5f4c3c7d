from __future__ import annotations
import csv
import os
import threading
from pathlib import Path
from typing import List

from ..helpers import now_ts, to_iso
from ..order import Order

HEADERS = [
    "Timestamp", "Order ID", "Buyer Name", "Buyer Email", "Buyer Phone",
    "Tier", "Seats", "Amount", "Covered Fees", "Donation", "Company",
    "Recognition Name",
]


def csv_row(order: Order, ts: float) -> List[str]:
    return [
        to_iso(ts),
        order.order_id,
        order.buyer_name or "",
        order.buyer_email or "",
        order.buyer_phone or "",
        order.tier,
        str(order.seats),
        order.amount,
        "Y" if order.covered_fees else "N",
        order.donation_amount,
        order.company or "",
        order.recognition_name or "",
    ]


class CsvLedger:
    """Append-only local CSV backup of the spreadsheet data.

    Appends are serialized per ledger; the header goes in when the file is
    still empty, checked under the same lock.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.is_file()

    def append(self, order: Order, ts: float | None = None) -> None:
        row = csv_row(order, now_ts() if ts is None else ts)
        if self.path.parent != Path(""):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, \
                self.path.open("a", newline="", encoding="utf-8") as f:
            if f.tell() == 0:
                csv.writer(f, lineterminator="\n").writerow(HEADERS)
            csv.writer(f, quoting=csv.QUOTE_ALL,
                       lineterminator="\n").writerow(row)
