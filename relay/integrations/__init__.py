"""
Integration runner to keep the API layer simple.
Pick the client for a destination profile, deliver, close the connection.
"""

from typing import Any, Dict, List, Mapping, Sequence

import httpx

from relay.config import DestinationProfile
from relay.observability import delivery_span

from .base import DeliveryResult
from .ghl import GhlClient
from .hubspot import HubSpotClient

__all__ = ["DeliveryResult", "GhlClient", "HubSpotClient", "deliver", "deliver_batch"]


async def deliver(
    profile: DestinationProfile,
    contact: Mapping[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> DeliveryResult:
    """
    Send one normalized contact to its destination.
    Raises ConfigError (before any network call) when the credential is missing.
    """
    if profile.kind == "ghl":
        with delivery_span(profile.name, profile.kind) as span:
            async with GhlClient(profile, transport=transport) as client:
                result = await client.send_contact(contact)
            span.set_attribute("relay.ok", result.ok)
            return result

    if profile.kind == "hubspot":
        with delivery_span(profile.name, profile.kind) as span:
            async with HubSpotClient(profile, transport=transport) as client:
                result = await client.upsert_one(contact)
            span.set_attribute("relay.ok", result.ok)
            return result

    raise ValueError(f"Unknown destination kind '{profile.kind}'")


async def deliver_batch(
    profile: DestinationProfile,
    contacts: Sequence[Dict[str, Any]],
    transport: httpx.AsyncBaseTransport | None = None,
) -> List[DeliveryResult]:
    if profile.kind != "hubspot":
        raise ValueError(f"Batch delivery is not supported for '{profile.kind}' destinations")
    with delivery_span(profile.name, "hubspot_batch", contacts=len(contacts)) as span:
        async with HubSpotClient(profile, transport=transport) as client:
            results = await client.upsert_batch(contacts)
        span.set_attribute("relay.sent", sum(1 for r in results if r.ok))
        return results
