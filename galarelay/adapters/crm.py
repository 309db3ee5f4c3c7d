from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

from ..cache import CachedValue
from ..errors import UpstreamAdapterError

log = logging.getLogger("galarelay.crm")

CONTACT_SOURCE = "Gala Checkout"


@dataclass
class FieldUpdate:
    ok: bool
    strategy: str  # 'name' | 'id'
    data: Dict[str, Any] = field(default_factory=dict)


def _json(r: httpx.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


class HighLevelCRM:
    """HighLevel (GHL) v1 REST adapter.

    Custom fields can be written by human-readable name or by internal id;
    which one the account accepts depends on its configuration, so
    `set_fields` tries by name and falls back to by id. The name -> id
    directory lives in `field_ids` and is fetched at most once per cache
    lifetime.
    """

    def __init__(self, http: httpx.AsyncClient, *, api_key: str,
                 location_id: str,
                 base_url: str = "https://rest.gohighlevel.com/v1",
                 field_ids: Optional[CachedValue[Dict[str, str]]] = None,
                 ) -> None:
        self.http = http
        self.api_key = api_key
        self.location_id = location_id
        self.base_url = base_url.rstrip("/")
        self.field_ids = field_ids if field_ids is not None \
            else CachedValue(ttl_seconds=None)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # ---
    # contacts
    # ---
    async def upsert_contact(self, *, email: str, name: str, phone: str,
                             company: str = "",
                             tags: Iterable[str] = ()) -> Optional[str]:
        payload: Dict[str, Any] = {
            "email": email,
            "name": name,
            "phone": phone,
            "source": CONTACT_SOURCE,
            "locationId": self.location_id,
            "tags": list(tags),
        }
        if company:
            payload["companyName"] = company

        r = await self.http.post(self._url("/contacts/"), json=payload,
                                 headers=self.headers)
        data = _json(r)
        if not r.is_success:
            log.error("GHL upsert error (%s): %s", r.status_code, data)
            return None
        # accounts answer either {contact: {id}} or {id}
        contact = data.get("contact") or {}
        return contact.get("id") or data.get("id") or None

    async def add_tag(self, contact_id: str, tag: str) -> None:
        r = await self.http.post(self._url(f"/contacts/{contact_id}/tags"),
                                 json={"tags": [tag]}, headers=self.headers)
        if not r.is_success:
            raise UpstreamAdapterError(
                f"GHL tag {tag!r} failed ({r.status_code}): {_json(r)}"
            )

    # ---
    # custom fields
    # ---
    async def update_fields_by_name(
            self, contact_id: str, fields: Mapping[str, str]
    ) -> FieldUpdate:
        r = await self.http.put(self._url(f"/contacts/{contact_id}"),
                                json={"customField": dict(fields)},
                                headers=self.headers)
        return FieldUpdate(r.is_success, "name", _json(r))

    async def field_id_map(self) -> Dict[str, str]:
        cached = self.field_ids.get()
        if cached is not None:
            return cached

        r = await self.http.get(
            self._url("/custom-fields/"),
            params={"locationId": self.location_id},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if not r.is_success:
            raise UpstreamAdapterError(
                f"GHL custom-field directory failed ({r.status_code})"
            )
        mapping: Dict[str, str] = {}
        for f in _json(r).get("customFields") or []:
            if f.get("name"):
                mapping[f["name"].lower()] = f["id"]
            if f.get("fieldKey"):
                # fieldKey is sometimes the better match
                mapping[f["fieldKey"].lower()] = f["id"]
        return self.field_ids.put(mapping)

    async def update_fields_by_id(
            self, contact_id: str, fields: Mapping[str, str]
    ) -> FieldUpdate:
        ids = await self.field_id_map()
        values = []
        for key, value in fields.items():
            if value is None or str(value) == "":
                continue
            fid = ids.get(key.lower())
            if not fid:
                log.warning('No custom field ID found for key "%s"', key)
                continue
            values.append({"id": fid, "value": value})

        if not values:
            return FieldUpdate(True, "id", {"note": "no fields to update"})

        r = await self.http.put(self._url(f"/contacts/{contact_id}"),
                                json={"customFields": values},
                                headers=self.headers)
        return FieldUpdate(r.is_success, "id", _json(r))

    async def set_fields(self, contact_id: str,
                         fields: Mapping[str, str]) -> FieldUpdate:
        first = await self.update_fields_by_name(contact_id, fields)
        if first.ok:
            return first
        log.warning("Name-based custom field update failed; trying "
                    "ID-based. %s", first.data)
        second = await self.update_fields_by_id(contact_id, fields)
        if not second.ok:
            log.error("ID-based custom field update failed. %s", second.data)
        return second
