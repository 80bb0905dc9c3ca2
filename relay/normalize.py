"""
Field normalization: inbound webhook payload -> destination contact shape.

Inbound payloads come in several historical shapes (flat `email`/`firstName`,
GHL's nested `contact.first_name`, ...). Each logical field has an ordered
alias table; the first non-blank value wins. That order is the ONLY conflict
resolution rule when a payload carries the same field twice, so keep it stable.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

# logical field -> candidate key paths, highest priority first
CRM_ALIASES: Dict[str, Tuple[str, ...]] = {
    "email": ("email", "Email", "contact.email"),
    "phone": ("phone", "Phone", "contact.phone"),
    "firstName": ("firstName", "first_name", "contact.first_name", "contact.firstName"),
    "lastName": ("lastName", "last_name", "contact.last_name", "contact.lastName"),
}
TAG_ALIASES: Tuple[str, ...] = ("tags", "contact.tags")

MARKETING_ALIASES: Dict[str, Tuple[str, ...]] = {
    "email": ("email",),
    "firstname": ("firstName", "first_name"),
    "lastname": ("lastName", "last_name"),
    "phone": ("phone",),
    "source": ("source",),
}
MARKETING_EMAIL_FALLBACK: Tuple[str, ...] = ("email", "Email", "contact.email")


def _lookup(payload: Mapping[str, Any], path: str) -> Any:
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


def _clean(value: Any) -> str | None:
    """Return a trimmed string, or None for missing/blank/container values."""
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def first_value(payload: Mapping[str, Any], paths: Iterable[str]) -> str | None:
    """First non-empty, non-whitespace value among `paths`, in order."""
    for path in paths:
        value = _clean(_lookup(payload, path))
        if value is not None:
            return value
    return None


def split_tags(raw: Any) -> List[str]:
    """
    - list/tuple: used as-is (items stringified)
    - "a, b ,c": split on comma, trimmed, empties dropped
    - anything else: []
    """
    if isinstance(raw, (list, tuple)):
        return [str(t) for t in raw if t is not None]
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    return []


def merge_tags(*groups: Sequence[str]) -> List[str]:
    """Concatenate, dedupe case-sensitively (first occurrence wins), drop empties."""
    seen = set()
    out: List[str] = []
    for group in groups:
        for tag in group:
            if tag == "" or tag in seen:
                continue
            seen.add(tag)
            out.append(tag)
    return out


def _pattern_tags(payload: Mapping[str, Any], pattern: "re.Pattern[str]") -> List[str]:
    sources: List[Mapping[str, Any]] = [payload]
    nested = payload.get("contact")
    if isinstance(nested, Mapping):
        sources.append(nested)

    found: List[str] = []
    for source in sources:
        for key, value in source.items():
            if not pattern.search(str(key)) or not value:
                continue
            # a bare `true` flag has nothing to say except its own name
            tag = str(key) if value is True else _clean(value)
            if tag:
                found.append(tag)
    return found


def normalize_for_crm(
    payload: Mapping[str, Any],
    default_tags: Sequence[str] = (),
    location_id: str | None = None,
    tag_pattern: str | None = None,
) -> Dict[str, Any]:
    """
    Map an inbound payload onto the GHL contact shape.

    Fields that resolve to nothing are left out entirely (GHL treats "" as a
    value). `tags` is left out when empty. Identity validation is the caller's
    job, see has_identity().
    """
    contact: Dict[str, Any] = {}
    for field, paths in CRM_ALIASES.items():
        value = first_value(payload, paths)
        if value is not None:
            contact[field] = value

    raw_tags: Any = None
    for path in TAG_ALIASES:
        raw_tags = _lookup(payload, path)
        if raw_tags:
            break
    discovered = split_tags(raw_tags)
    if tag_pattern:
        discovered += _pattern_tags(payload, re.compile(tag_pattern))

    tags = merge_tags(list(default_tags), discovered)
    if tags:
        contact["tags"] = tags
    if location_id:
        contact["locationId"] = location_id
    return contact


def has_identity(contact: Mapping[str, Any]) -> bool:
    return bool(contact.get("email") or contact.get("phone"))


def normalize_for_marketing(
    payload: Mapping[str, Any],
    properties: Mapping[str, str] | None = None,
    custom_properties: Mapping[str, str] | None = None,
    email_fallback: bool = False,
    include_tags: bool = False,
) -> Dict[str, str]:
    """
    Map an inbound payload onto a flat HubSpot property dict.

    Unlike the CRM shape, every property is always present ("" when missing):
    the upsert sends the same property list on create and update.

    properties:        logical name -> property name (per HubSpot portal)
    custom_properties: inbound key  -> property name
    email_fallback:    also look at `Email` / `contact.email`
    include_tags:      legacy variant; sends tags as a ';'-joined string
    """
    names = dict(properties or {})
    out: Dict[str, str] = {}
    for field, paths in MARKETING_ALIASES.items():
        if field == "email" and email_fallback:
            paths = MARKETING_EMAIL_FALLBACK
        out[names.get(field, field)] = first_value(payload, paths) or ""

    for inbound_key, prop in (custom_properties or {}).items():
        out[prop] = first_value(payload, (inbound_key,)) or ""

    if include_tags:
        out[names.get("tags", "tags")] = ";".join(merge_tags(split_tags(payload.get("tags"))))
    return out


def marketing_email(contact: Mapping[str, str], properties: Mapping[str, str] | None = None) -> str:
    """The email value of a normalized marketing contact, whatever its property name."""
    return contact.get((properties or {}).get("email", "email"), "")
