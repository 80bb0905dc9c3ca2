# api/main.py
# FastAPI webhook relay: GHL automations (and friends) -> GHL sub-accounts / HubSpot.
# - One parameterized handler per destination profile (no copy-pasted routes)
# - Inbound payload is appended to the destination's JSONL log in the background
# - Normalize -> validate email/phone -> deliver -> map the result to a status code
# - Outbound calls have a fixed timeout and are never retried

from typing import Any, Awaitable, Callable, Dict, List

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from relay.config import DestinationProfile, Settings, load_destinations, log_path, settings as default_settings
from relay.exceptions import ConfigError
from relay.integrations import deliver, deliver_batch
from relay.logging_setup import bind_webhook_context, configure_logging, get_logger
from relay.logsink import append_log
from relay.normalize import has_identity, marketing_email, normalize_for_crm, normalize_for_marketing
from relay.observability import configure_tracer, metrics_app, record_outcome
from relay.security import SECRET_HEADER, pop_body_secret, verify_shared_secret
from relay.utils import payload_preview

APP_NAME = "GHL Webhook Relay"

log = get_logger()

Handler = Callable[[Request, BackgroundTasks], Awaitable[Any]]


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")


def _check_secret(cfg: Settings, profile: DestinationProfile, request: Request, body_secret: str | None) -> None:
    try:
        verify_shared_secret(
            cfg.WEBHOOK_SECRET,
            header=request.headers.get(SECRET_HEADER),
            query=request.query_params.get("secret"),
            body=body_secret,
        )
    except HTTPException:
        record_outcome(profile.name, "unauthorized")
        log.warning("webhook_unauthorized", destination=profile.name)
        raise


async def _accept(cfg: Settings, profile: DestinationProfile, request: Request, background: BackgroundTasks) -> Any:
    """Parse, authorize and schedule the request log. Returns the payload (secret removed)."""
    bind_webhook_context(profile.name, request.headers.get("X-Request-ID"))
    payload = await _read_json(request)
    body_secret = pop_body_secret(payload) if isinstance(payload, dict) else None
    _check_secret(cfg, profile, request, body_secret)

    background.add_task(append_log, log_path(cfg, profile), payload)
    log.info(
        "webhook_received",
        destination=profile.name,
        payload=payload_preview(payload, redact=cfg.PII_REDACTION_ENABLED),
    )
    return payload


def _missing_credential(profile: DestinationProfile) -> JSONResponse:
    record_outcome(profile.name, "misconfigured")
    msg = f"{profile.token_env} not configured"
    log.error("destination_not_configured", destination=profile.name, token_env=profile.token_env)
    return JSONResponse(status_code=500, content={"status": "error", "message": msg})


# ---------- GHL destinations ----------


def _ghl_handler(cfg: Settings, profile: DestinationProfile, transport) -> Handler:
    async def handler(request: Request, background: BackgroundTasks):
        payload = await _accept(cfg, profile, request, background)
        if not isinstance(payload, dict):
            record_outcome(profile.name, "rejected")
            return PlainTextResponse("Payload must be a JSON object", status_code=400)

        contact = normalize_for_crm(
            payload,
            default_tags=profile.default_tags,
            location_id=profile.location_id,
            tag_pattern=profile.tag_field_pattern,
        )
        if not has_identity(contact):
            record_outcome(profile.name, "rejected")
            log.info("contact_skipped", destination=profile.name, reason="missing email and phone")
            return PlainTextResponse("Missing email or phone", status_code=400)

        if not profile.configured:
            return _missing_credential(profile)

        result = await deliver(profile, contact, transport=transport)
        if not result.ok:
            record_outcome(profile.name, "failed")
            log.error(
                "delivery_failed",
                destination=profile.name,
                status_code=result.status_code,
                error=result.error,
            )
            return JSONResponse(
                status_code=500,
                content={"status": "error", "message": f"Error sending to {profile.label}", "error": result.error},
            )

        record_outcome(profile.name, "delivered")
        log.info("delivery_succeeded", destination=profile.name, contact_id=result.contact_id)
        return PlainTextResponse(f"Sent to {profile.label}", status_code=200)

    return handler


# ---------- HubSpot destinations ----------


def _marketing_contact(profile: DestinationProfile, payload: Dict[str, Any]) -> Dict[str, str]:
    return normalize_for_marketing(
        payload,
        properties=profile.properties,
        custom_properties=profile.custom_properties,
        email_fallback=profile.email_fallback,
        include_tags=profile.include_tags,
    )


def _hubspot_handler(cfg: Settings, profile: DestinationProfile, transport) -> Handler:
    async def handler(request: Request, background: BackgroundTasks):
        payload = await _accept(cfg, profile, request, background)
        if not isinstance(payload, dict):
            record_outcome(profile.name, "rejected")
            return JSONResponse(status_code=400, content={"status": "error", "message": "Payload must be a JSON object"})

        contact = _marketing_contact(profile, payload)
        if not marketing_email(contact, profile.properties):
            record_outcome(profile.name, "rejected")
            log.info("contact_skipped", destination=profile.name, reason="missing email")
            return JSONResponse(status_code=400, content={"status": "error", "message": "Missing required field: email"})

        if not profile.configured:
            return _missing_credential(profile)

        result = await deliver(profile, contact, transport=transport)
        if not result.ok:
            record_outcome(profile.name, "failed")
            log.error("delivery_failed", destination=profile.name, status_code=result.status_code, error=result.error)
            return JSONResponse(status_code=500, content={"status": "error", "error": result.error})

        record_outcome(profile.name, "delivered")
        log.info("delivery_succeeded", destination=profile.name, result=result.status, contact_id=result.contact_id)
        return JSONResponse(
            status_code=200,
            content={"status": "success", "result": result.status, "id": result.contact_id, "data": result.data},
        )

    return handler


def _hubspot_batch_handler(cfg: Settings, profile: DestinationProfile, transport) -> Handler:
    async def handler(request: Request, background: BackgroundTasks):
        payload = await _accept(cfg, profile, request, background)
        items = payload.get("contacts") if isinstance(payload, dict) else payload
        if not isinstance(items, list) or not items or not all(isinstance(i, dict) for i in items):
            record_outcome(profile.name, "rejected")
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "Expected a non-empty list of contact objects"},
            )

        contacts = [_marketing_contact(profile, item) for item in items]
        invalid = [i for i, c in enumerate(contacts) if not marketing_email(c, profile.properties)]
        if invalid:
            record_outcome(profile.name, "rejected")
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "Missing required field: email", "invalid": invalid},
            )

        if not profile.configured:
            return _missing_credential(profile)

        results = await deliver_batch(profile, contacts, transport=transport)
        body: Dict[str, Any] = {
            "results": [r.as_dict() for r in results],
            "sent": sum(1 for r in results if r.ok),
            "not_sent": len(contacts) - sum(1 for r in results if r.ok),
        }
        if len(results) != len(contacts) or not all(r.ok for r in results):
            record_outcome(profile.name, "failed")
            log.error("batch_delivery_failed", destination=profile.name, sent=body["sent"], total=len(contacts))
            return JSONResponse(status_code=500, content={"status": "error", **body})

        record_outcome(profile.name, "delivered")
        log.info("batch_delivery_succeeded", destination=profile.name, total=len(contacts))
        return JSONResponse(status_code=200, content={"status": "success", **body})

    return handler


# ---------- App factory ----------


def create_app(
    cfg: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    destinations: List[DestinationProfile] | None = None,
) -> FastAPI:
    """
    Build the app once: settings + destination table are resolved here and
    closed over by the handlers. `transport` is passed to every outbound client.
    """
    cfg = cfg or default_settings
    configure_logging(cfg.LOG_LEVEL)
    configure_tracer(cfg.OTEL_EXPORTER_OTLP_ENDPOINT, cfg.SERVICE_NAME)

    profiles = destinations if destinations is not None else load_destinations(cfg)

    app = FastAPI(title=APP_NAME)
    app.state.settings = cfg
    app.state.destinations = profiles
    app.mount("/metrics", metrics_app)

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return "Webhook server running."

    @app.get("/healthz", response_class=PlainTextResponse)
    def health() -> str:
        return "ok"

    @app.get("/env-test")
    def env_test() -> Dict[str, str]:
        # debug: which credentials were loaded (never the values)
        return {p.name: "Loaded" if p.configured else "Missing" for p in profiles}

    for profile in profiles:
        if profile.kind == "ghl":
            app.add_api_route(profile.path, _ghl_handler(cfg, profile, transport), methods=["POST"], name=profile.name)
        elif profile.kind == "hubspot":
            app.add_api_route(profile.path, _hubspot_handler(cfg, profile, transport), methods=["POST"], name=profile.name)
            app.add_api_route(
                f"{profile.path.rstrip('/')}/batch",
                _hubspot_batch_handler(cfg, profile, transport),
                methods=["POST"],
                name=f"{profile.name}_batch",
            )
        else:
            raise ConfigError(f"Unknown destination kind '{profile.kind}'")

    log.info(
        "relay_started",
        destinations={p.name: {"path": p.path, "configured": p.configured} for p in profiles},
        secret_required=bool(cfg.WEBHOOK_SECRET),
    )
    return app


app = create_app()
