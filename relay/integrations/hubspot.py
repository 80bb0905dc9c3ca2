"""
HubSpot CRM v3 contacts: create-or-update keyed by email.
Docs:
- search:        POST  /crm/v3/objects/contacts/search
- create:        POST  /crm/v3/objects/contacts
- update:        PATCH /crm/v3/objects/contacts/{contactId}
- batch upsert:  POST  /crm/v3/objects/contacts/batch/upsert  (max 100 inputs)

upsert_one() is search-then-write and NOT atomic: two webhooks for the same
new email arriving together can both miss the search and create two records.
upsert_batch() leaves the keying to HubSpot (idProperty=email) and skips the search.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

import httpx

from relay.exceptions import DeliveryError

from .base import BaseClient, DeliveryResult, contact_id_str, response_body, log

CONTACTS = "/crm/v3/objects/contacts"
BATCH_LIMIT = 100


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class HubSpotClient(BaseClient):
    @property
    def _email_property(self) -> str:
        return self.profile.properties.get("email", "email")

    async def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._request(method, path, **kwargs)
        except httpx.HTTPError as e:
            log.warning("hubspot_transport_error", destination=self.profile.name, path=path, err=str(e) or type(e).__name__)
            raise

    async def find_by_email(self, email: str, properties: Sequence[str]) -> Dict[str, Any] | None:
        """
        Exact-match search; returns the first record or None.
        Raises httpx.HTTPStatusError on a non-2xx answer and DeliveryError when a
        2xx answer is not a search result (maintenance pages, proxies, ...).
        """
        body = {
            "filterGroups": [
                {"filters": [{"propertyName": self._email_property, "operator": "EQ", "value": email}]}
            ],
            "properties": list(properties),
            "limit": 1,
        }
        resp = await self._call("POST", f"{CONTACTS}/search", json=body)
        resp.raise_for_status()
        data = response_body(resp)
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise DeliveryError("Unexpected HubSpot search response", error=data, status_code=resp.status_code)
        if not results:
            return None
        record = results[0]
        if not isinstance(record, dict) or record.get("id") is None:
            raise DeliveryError("HubSpot search returned a record without an id", error=data, status_code=resp.status_code)
        return record

    async def upsert_one(self, contact: Mapping[str, Any]) -> DeliveryResult:
        email = contact.get(self._email_property) or ""
        payload = {"properties": dict(contact)}
        try:
            existing = await self.find_by_email(email, list(contact.keys()))
            if existing:
                resp = await self._call("PATCH", f"{CONTACTS}/{existing.get('id')}", json=payload)
                status = "updated"
            else:
                resp = await self._call("POST", CONTACTS, json=payload)
                status = "created"
        except DeliveryError as e:
            log.warning("hubspot_bad_response", destination=self.profile.name, err=str(e))
            return DeliveryResult.failed(e.error, status_code=e.status_code)
        except httpx.HTTPStatusError as e:
            return DeliveryResult.failed(response_body(e.response), status_code=e.response.status_code)
        except httpx.HTTPError as e:
            return DeliveryResult.failed(str(e) or type(e).__name__)

        if not resp.is_success:
            return DeliveryResult.failed(response_body(resp), status_code=resp.status_code)

        data = response_body(resp)
        contact_id = data.get("id") if isinstance(data, dict) else None
        if contact_id is None and existing:
            contact_id = existing.get("id")
        return DeliveryResult(
            ok=True,
            status=status,
            contact_id=contact_id_str(contact_id),
            status_code=resp.status_code,
            data=data,
        )

    def _rejected_by_email(self, data: Any) -> Dict[str, Any]:
        """
        Map lowercased email -> error entry from a 207 multi-status body:
        {"errors": [{"message": ..., "context": {"ids": ["a@b.co"]}}, ...]}
        """
        rejected: Dict[str, Any] = {}
        errors = data.get("errors") if isinstance(data, dict) else None
        for err in errors or []:
            ids = ((err or {}).get("context") or {}).get("ids") if isinstance(err, dict) else None
            for key in ids or []:
                rejected[str(key).lower()] = err
        return rejected

    async def _upsert_group(self, group: Sequence[Mapping[str, Any]]) -> List[DeliveryResult]:
        inputs = [
            {"idProperty": self._email_property, "id": c.get(self._email_property), "properties": dict(c)}
            for c in group
        ]
        try:
            resp = await self._call("POST", f"{CONTACTS}/batch/upsert", json={"inputs": inputs})
        except httpx.HTTPError as e:
            err = str(e) or type(e).__name__
            return [DeliveryResult.failed(err) for _ in group]

        if not resp.is_success:
            err = response_body(resp)
            return [DeliveryResult.failed(err, status_code=resp.status_code) for _ in group]

        data = response_body(resp)
        by_email: Dict[str, Dict[str, Any]] = {}
        for row in (data.get("results") or []) if isinstance(data, dict) else []:
            props = row.get("properties") or {}
            key = props.get(self._email_property)
            if key:
                by_email[str(key).lower()] = row

        rejected = self._rejected_by_email(data)
        # errors we could not pin to an email fail every contact HubSpot did not return
        unmapped = None
        if isinstance(data, dict) and data.get("errors") and not rejected:
            unmapped = data["errors"][0]

        results: List[DeliveryResult] = []
        for c in group:
            email = str(c.get(self._email_property) or "").lower()
            row = by_email.get(email) or {}
            err = rejected.get(email) or (unmapped if not row else None)
            if err is not None:
                results.append(DeliveryResult.failed(err, status_code=resp.status_code))
                continue
            # HubSpot marks freshly created rows with "new": true
            status = "created" if row.get("new") else ("updated" if row else "sent")
            results.append(
                DeliveryResult(
                    ok=True,
                    status=status,
                    contact_id=contact_id_str(row.get("id")),
                    status_code=resp.status_code,
                    data=row or None,
                )
            )
        return results

    async def upsert_batch(self, contacts: Sequence[Mapping[str, Any]]) -> List[DeliveryResult]:
        """
        Groups of <=100 in input order, strictly one after another.
        The first failing group is reported (one failed result per contact) and
        the rest are NOT sent; groups already sent stay applied.
        """
        results: List[DeliveryResult] = []
        groups = _chunks(list(contacts), BATCH_LIMIT)
        for idx, group in enumerate(groups):
            group_results = await self._upsert_group(group)
            results.extend(group_results)
            if not all(r.ok for r in group_results):
                log.warning(
                    "hubspot_batch_aborted",
                    destination=self.profile.name,
                    failed_group=idx,
                    skipped_groups=len(groups) - idx - 1,
                )
                break
        return results
