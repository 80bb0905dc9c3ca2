"""
GoHighLevel contacts (create only)
Docs:
- v1 (legacy, agency/location API key): POST https://rest.gohighlevel.com/v1/contacts/
- v2 (private integration token):      POST https://services.leadconnectorhq.com/contacts/
                                        requires `Version: 2021-07-28` and a locationId

There is NO lookup before the create. GHL dedupes on its side for most
sub-accounts, and the profiles we talk to have no cheap search-by-email, so
a repeated webhook may produce a duplicate contact. A stronger version would
search first, the way hubspot.upsert_one() does.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

import httpx

from .base import BaseClient, DeliveryResult, contact_id_str, response_body, log


class GhlClient(BaseClient):
    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.profile.api_version:
            headers["Version"] = self.profile.api_version
            headers["Accept"] = "application/json"
        return headers

    async def send_contact(self, contact: Mapping[str, Any]) -> DeliveryResult:
        body = dict(contact)
        if self.profile.location_id and "locationId" not in body:
            body["locationId"] = self.profile.location_id

        try:
            resp = await self._request("POST", "/contacts/", json=body)
        except httpx.HTTPError as e:
            log.warning("ghl_transport_error", destination=self.profile.name, err=str(e) or type(e).__name__)
            return DeliveryResult.failed(str(e) or type(e).__name__)

        if not resp.is_success:
            return DeliveryResult.failed(response_body(resp), status_code=resp.status_code)

        data = response_body(resp) if resp.content else {}
        # v2 wraps the record in "contact"; v1 returns it flat (or also wrapped, depending on account)
        record = data.get("contact") if isinstance(data, dict) and isinstance(data.get("contact"), dict) else data
        contact_id = record.get("id") if isinstance(record, dict) else None
        return DeliveryResult(
            ok=True,
            status="created",
            contact_id=contact_id_str(contact_id),
            status_code=resp.status_code,
            data=data,
        )
