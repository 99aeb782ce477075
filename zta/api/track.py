import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from kafka import KafkaProducer
from sqlmodel import Session

from zta import core
from zta.analytics import ingest_events
from zta.api.security import client_ip
from zta.config import settings
from zta.db import get_session
from zta.errors import ForbiddenError, NotFoundError, ValidationError
from zta.kafka_producer import get_kafka_producer, publish_record
from zta.limiter import limiter
from zta.models import EVENT_TYPES, TrackPayload
from zta.storage import SiteStore, get_sites
from zta.webhooks import dispatch_records

router = APIRouter(
    tags=["Track"]
)

logger = logging.getLogger("ZTA.Track")

LOCAL_HOSTS = ("localhost", "127.0.0.1", "[::1]", "::1")


def origin_allowed(origin: Optional[str], site_domain: str) -> bool:
    """
    The Origin host must be the site's domain or one of its subdomains.
    Local origins are accepted outside production.
    """
    if not origin:
        return True
    host = (urlsplit(origin).hostname or "").lower()
    if not settings.is_production and host in LOCAL_HOSTS:
        return True
    domain = site_domain.lower().split(":")[0]
    if domain.startswith("www."):
        domain = domain[4:]
    if host.startswith("www."):
        host = host[4:]
    return host == domain or host.endswith("." + domain)


def event_payload(event_type: str, body: TrackPayload) -> Dict[str, Any]:
    """The type-specific fields that go into the record's payload column."""
    if event_type == "event":
        fields = {"category": body.category, "action": body.action, "label": body.label, "value": body.value}
    elif event_type == "engagement":
        fields = {
            "timeOnPage": body.timeOnPage,
            "sessionDuration": body.sessionDuration,
            "maxScrollDepth": body.maxScrollDepth,
            "isExitPage": body.isExitPage,
        }
    elif event_type == "pageview":
        fields = {"isNewVisitor": body.isNewVisitor, "isNewSession": body.isNewSession, "pageCount": body.pageCount}
    else:
        fields = {}
    return {k: v for k, v in fields.items() if v is not None}


@router.post("/api/track", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.TRACK_ENDPOINT_RATELIMIT)
def track_event(
    request: Request,
    body: TrackPayload,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    sites: SiteStore = Depends(get_sites),
    producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """
    Collects one event from the tracking script.
    Returns 202 once the event is queued (Kafka) or stored (direct mode).
    Bots get the same response but nothing is recorded.
    """
    if not body.siteId:
        raise ValidationError("Site ID required")
    site = sites.get_site(body.siteId)
    if not site:
        raise NotFoundError(message="Invalid site ID")

    if not origin_allowed(request.headers.get("origin"), site["domain"]):
        raise ForbiddenError("Origin not allowed")

    user_agent = request.headers.get("user-agent", "")
    if core.is_bot(user_agent):
        logger.debug(f"Dropped bot traffic for {site['id']}")
        return {"success": True}

    event_type = body.type if body.type in EVENT_TYPES else "pageview"
    if event_type == "event" and (not body.category or not body.action):
        raise ValidationError("Category and action required for events")

    user_fields = body.model_dump(include={"path", "url", "title", "referrer", "category", "action", "label", "utm"})
    if not core.validate_no_pii(user_fields):
        raise ValidationError("Invalid data: personal information is not accepted")

    record = core.create_record(
        site_id=site["id"],
        ip=client_ip(request),
        user_agent=user_agent,
        headers=request.headers,
        secret=settings.HASH_SECRET,
        event_type=event_type,
        path=body.path or body.url or "/",
        referrer=body.referrer,
        site_domain=site["domain"],
        session_id=body.sessionId,
        utm=body.utm or core.utm_from_url(body.url),
        payload=event_payload(event_type, body),
        is_bounce=bool(body.isBounce),
        duration=body.timeOnPage or body.sessionDuration or 0,
    )

    if producer is not None:
        # The worker stores the event and fires webhooks
        publish_record(producer, record)
    else:
        ingest_events(session, [record])
        background_tasks.add_task(dispatch_records, [record])

    return {"success": True}
