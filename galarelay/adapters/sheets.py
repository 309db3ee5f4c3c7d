from __future__ import annotations
import asyncio
from typing import Any, Callable, List, Optional

import gspread

from ..errors import UpstreamAdapterError
from ..helpers import now_ts, to_iso
from ..order import Order

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


def sheet_row(order: Order, ts: float) -> List[Any]:
    return [
        order.order_id,
        order.buyer_name,
        order.buyer_email,
        order.buyer_phone,
        order.tier,
        order.seats,
        order.amount,  # "200.00"
        "TRUE" if order.covered_fees else "FALSE",
        order.donation_amount,
        order.company,
        order.recognition_name,
        to_iso(ts),
    ]


class SheetsLedger:
    def __init__(self, *, spreadsheet_id: str, tab_name: str = "Orders",
                 sa_email: str = "", private_key: str = "",
                 client_factory: Optional[Callable[[], Any]] = None) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.tab_name = tab_name or "Orders"
        self.sa_email = sa_email
        self.private_key = private_key
        self._client_factory = client_factory or self._service_account
        self._client = None

    def _service_account(self) -> gspread.Client:
        if not self.sa_email or not self.private_key:
            raise UpstreamAdapterError(
                "Google service account env vars missing."
            )
        info = {
            "type": "service_account",
            "client_email": self.sa_email,
            "private_key": self.private_key,
            "token_uri": TOKEN_URI,
        }
        return gspread.service_account_from_dict(info, scopes=SCOPES)

    def _append_blocking(self, values: List[Any]) -> None:
        if self._client is None:
            self._client = self._client_factory()
        ws = self._client.open_by_key(self.spreadsheet_id) \
            .worksheet(self.tab_name)
        ws.append_row(
            values,
            value_input_option="USER_ENTERED",
            insert_data_option="INSERT_ROWS",
            table_range="A:Z",
        )

    async def append(self, order: Order, ts: float | None = None) -> None:
        if not self.spreadsheet_id:
            raise UpstreamAdapterError("GOOGLE_SHEETS_ID not set")
        values = sheet_row(order, now_ts() if ts is None else ts)
        try:
            await asyncio.to_thread(self._append_blocking, values)
        except gspread.exceptions.GSpreadException as e:
            raise UpstreamAdapterError(f"sheet append failed: {e}") from e
