"""
Per-site configuration rules: goals, funnels, alerts, annotations and
webhooks. Each kind lives in its own store with a `site_<kind>s_<siteId>`
index list.
"""
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from zta.config import settings
from zta.storage.blob import BlobStore, add_to_index, read_index, remove_from_index
from zta.utils import iso_now

logger = logging.getLogger("ZTA.Rules")

# kind -> (store name, id prefix)
RULE_KINDS = {
    "goal": ("goals", "goal"),
    "funnel": ("funnels", "funnel"),
    "alert": ("alerts", "alert"),
    "annotation": ("annotations", "ann"),
    "webhook": ("webhooks", "wh"),
}

# Kinds that are flagged inactive instead of removed
SOFT_DELETE_KINDS = ("webhook",)


def public_webhook(webhook: Dict[str, Any]) -> Dict[str, Any]:
    """Webhook without its signing secret."""
    return {k: v for k, v in webhook.items() if k != "secret"}


class RuleStore:

    def __init__(self, blob: BlobStore):
        self.blob = blob

    def _index_key(self, kind: str, site_id: str) -> str:
        return f"site_{kind}s_{site_id}"

    def create(self, kind: str, site_id: str, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        store, prefix = RULE_KINDS[kind]
        record = {
            "id": f"{prefix}_{uuid.uuid4().hex[:12]}",
            "siteId": site_id,
            "userId": user_id,
            **fields,
            "createdAt": iso_now(),
        }
        if kind == "webhook":
            record.update({
                "secret": f"whsec_{uuid.uuid4().hex}",
                "isActive": True,
                "lastTriggeredAt": None,
                "failureCount": 0,
                "successCount": 0,
            })
        self.blob.set(store, record["id"], record)
        add_to_index(self.blob, store, self._index_key(kind, site_id), record["id"])
        logger.info(f"Created {kind} {record['id']} for site {site_id}")
        return record

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        if not record_id:
            return None
        store, _ = RULE_KINDS[kind]
        record = self.blob.get(store, record_id)
        if record and kind in SOFT_DELETE_KINDS and record.get("deletedAt"):
            return None
        return record

    def list(self, kind: str, site_id: str) -> List[Dict[str, Any]]:
        store, _ = RULE_KINDS[kind]
        records = []
        for record_id in read_index(self.blob, store, self._index_key(kind, site_id)):
            record = self.blob.get(store, record_id)
            if not record:
                continue
            if kind in SOFT_DELETE_KINDS and record.get("deletedAt"):
                continue
            records.append(record)
        return records

    def update(self, kind: str, record: Dict[str, Any], updates: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
        store, _ = RULE_KINDS[kind]
        for field in allowed:
            if field in updates and updates[field] is not None:
                record[field] = updates[field]
        record["updatedAt"] = iso_now()
        self.blob.set(store, record["id"], record)
        return record

    def save(self, kind: str, record: Dict[str, Any]):
        store, _ = RULE_KINDS[kind]
        self.blob.set(store, record["id"], record)

    def delete(self, kind: str, record: Dict[str, Any]):
        store, _ = RULE_KINDS[kind]
        if kind in SOFT_DELETE_KINDS:
            record["isActive"] = False
            record["deletedAt"] = iso_now()
            self.blob.set(store, record["id"], record)
            return
        self.blob.delete(store, record["id"])
        remove_from_index(self.blob, store, self._index_key(kind, record["siteId"]), record["id"])

    def delete_site_rules(self, site_id: str):
        for kind, (store, _) in RULE_KINDS.items():
            index_key = self._index_key(kind, site_id)
            for record_id in read_index(self.blob, store, index_key):
                self.blob.delete(store, record_id)
            self.blob.delete(store, index_key)

    # Webhooks

    def webhooks_for_event(self, site_id: str, event: str) -> List[Dict[str, Any]]:
        return [w for w in self.list("webhook", site_id) if w.get("isActive") and event in (w.get("events") or [])]

    def record_webhook_delivery(self, webhook_id: str, success: bool) -> Optional[Dict[str, Any]]:
        """Consecutive failures past the limit disable the webhook; a success resets the count."""
        webhook = self.blob.get("webhooks", webhook_id)
        if not webhook:
            return None
        webhook["lastTriggeredAt"] = iso_now()
        if success:
            webhook["successCount"] = webhook.get("successCount", 0) + 1
            webhook["failureCount"] = 0
        else:
            webhook["failureCount"] = webhook.get("failureCount", 0) + 1
            if webhook["failureCount"] >= settings.WEBHOOK_MAX_FAILURES:
                webhook["isActive"] = False
                webhook["disabledReason"] = "Too many consecutive failures"
                logger.warning(f"Disabled webhook {webhook_id} after {webhook['failureCount']} failures")
        self.blob.set("webhooks", webhook_id, webhook)
        return webhook
