import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from zta.config import settings
from zta.storage import RuleStore, get_rules
from zta.utils import iso_now

logger = logging.getLogger("ZTA.Webhooks")

WEBHOOK_EVENTS = ("pageview", "event", "daily_summary", "traffic_spike", "goal_completed")


def sign_payload(body: str, secret: str) -> str:
    """Hex HMAC-SHA256 of the exact request body."""
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def build_payload(event: str, site_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": event, "timestamp": iso_now(), "site_id": site_id, "data": data}


def deliver(rules: RuleStore, webhook: Dict[str, Any], payload: Dict[str, Any]) -> Tuple[bool, Optional[int]]:
    """
    POSTs one signed payload. Returns (success, HTTP status or None when the
    endpoint could not be reached) and records the outcome on the webhook.
    """
    body = json.dumps(payload, separators=(",", ":"), default=str)
    headers = {
        "Content-Type": "application/json",
        "User-Agent": "ZTA-Webhooks/1.0",
        "X-ZTA-Signature": sign_payload(body, webhook["secret"]),
        "X-ZTA-Event": payload["event"],
    }
    status_code = None
    try:
        response = httpx.post(webhook["url"], content=body, headers=headers, timeout=settings.WEBHOOK_TIMEOUT)
        status_code = response.status_code
        success = response.is_success
    except httpx.HTTPError as e:
        logger.warning(f"Webhook {webhook['id']} delivery failed: {e}")
        success = False

    if not success:
        logger.warning(f"Webhook {webhook['id']} returned {status_code}")
    rules.record_webhook_delivery(webhook["id"], success)
    return success, status_code


def dispatch_event(site_id: str, event: str, data: Dict[str, Any], rules: Optional[RuleStore] = None) -> int:
    """Sends an event to every active webhook of the site subscribed to it. Returns the number delivered."""
    rules = rules or get_rules()
    delivered = 0
    for webhook in rules.webhooks_for_event(site_id, event):
        success, _ = deliver(rules, webhook, build_payload(event, site_id, data))
        delivered += int(success)
    return delivered


def dispatch_records(records: Iterable[Dict[str, Any]], rules: Optional[RuleStore] = None) -> int:
    """Forwards ingested pageviews and custom events to subscribed webhooks."""
    rules = rules or get_rules()
    delivered = 0
    for record in records:
        event = record.get("event_type")
        if event not in ("pageview", "event"):
            continue
        data = {
            "path": record.get("path"),
            "referrer": record.get("referrer_domain"),
            "source": record.get("traffic_source"),
            "device": record.get("context_device"),
            "country": record.get("context_country"),
        }
        if event == "event":
            data.update({k: v for k, v in (record.get("payload") or {}).items() if k in ("category", "action", "label", "value")})
        delivered += dispatch_event(record["site_id"], event, data, rules)
    return delivered
