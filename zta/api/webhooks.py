import logging
from typing import List, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Query, Response, status

from zta import webhooks
from zta.api.security import SiteAccess, get_site_access, load_rule
from zta.errors import ValidationError
from zta.models import WebhookCreate, WebhookUpdate
from zta.storage import RuleStore, get_rules
from zta.storage.rules import public_webhook

router = APIRouter(
    prefix="/api/webhooks",
    tags=["Webhooks"]
)

logger = logging.getLogger("ZTA.Webhooks")

DEFAULT_EVENTS = ["event"]


def check_url(url: Optional[str]) -> str:
    try:
        parts = urlsplit(url or "")
    except ValueError:
        raise ValidationError("Invalid webhook URL")
    if not parts.scheme or not parts.hostname:
        raise ValidationError("Invalid webhook URL")
    if parts.scheme != "https":
        raise ValidationError("Webhook URL must use HTTPS")
    return url


def check_events(events: Optional[List[str]]) -> List[str]:
    if not events:
        return list(DEFAULT_EVENTS)
    invalid = [e for e in events if e not in webhooks.WEBHOOK_EVENTS]
    if invalid:
        raise ValidationError(f"Invalid events: {', '.join(invalid)}. Use any of: {', '.join(webhooks.WEBHOOK_EVENTS)}")
    return list(dict.fromkeys(events))


@router.get("")
def list_webhooks(
    siteId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    site = access.write(siteId)
    return {
        "webhooks": [public_webhook(w) for w in rules.list("webhook", site["id"])],
        "availableEvents": list(webhooks.WEBHOOK_EVENTS),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_webhook(
    body: WebhookCreate,
    response: Response,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    """
    Creates a webhook and returns its signing secret once.
    With action="test" and a webhookId, sends a test delivery instead.
    """
    if body.action == "test":
        webhook = load_rule(rules, access, "webhook", body.webhookId)
        payload = webhooks.build_payload("test", webhook["siteId"], {"message": "Test delivery from Zero Trust Analytics"})
        success, status_code = webhooks.deliver(rules, webhook, payload)
        response.status_code = status.HTTP_200_OK
        return {"success": success, "statusCode": status_code}

    if not body.siteId or not body.url:
        raise ValidationError("Site ID and URL required")
    site = access.write(body.siteId)
    url = check_url(body.url)

    webhook = rules.create("webhook", site["id"], access.auth.id, {
        "url": url,
        "events": check_events(body.events),
        "name": (body.name or "").strip() or urlsplit(url).hostname,
    })
    return {
        "success": True,
        "webhook": webhook,
        "message": "Save the signing secret now. It will not be shown again.",
    }


@router.patch("")
def update_webhook(
    body: WebhookUpdate,
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    webhook = load_rule(rules, access, "webhook", body.webhookId)
    updates = {
        "url": check_url(body.url) if body.url is not None else None,
        "events": check_events(body.events) if body.events is not None else None,
        "name": body.name,
        "isActive": body.isActive,
    }
    if body.isActive:
        updates["failureCount"] = 0
    webhook = rules.update("webhook", webhook, updates, ("url", "events", "name", "isActive", "failureCount"))
    return {"success": True, "webhook": public_webhook(webhook)}


@router.delete("")
def delete_webhook(
    webhookId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    rules: RuleStore = Depends(get_rules),
):
    webhook = load_rule(rules, access, "webhook", webhookId)
    rules.delete("webhook", webhook)
    return {"success": True}
