"""
Sites, public share links, client error reports and imported history.
"""
import logging
import re
import secrets
import uuid
from typing import Any, Dict, List, Optional

from zta.config import settings
from zta.storage.blob import BlobStore, add_to_index, read_index, remove_from_index
from zta.utils import iso_now, parse_iso, utcnow

logger = logging.getLogger("ZTA.Sites")

SITES = "sites"
SHARES = "public-shares"
ERRORS = "errors"
IMPORTS = "imports"
HISTORICAL = "historical"

PLAN_SITE_LIMITS = {"solo": 1, "starter": 3, "pro": 10, "business": 50}
DEFAULT_SHARE_PERIODS = ["7d", "30d", "90d"]
ERROR_INDEX_LIMIT = 1000
IMPORT_HISTORY_LIMIT = 50


def normalize_domain(domain: str) -> str:
    """Lowercases and strips scheme, path and trailing slash from a domain."""
    domain = domain.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    return domain.split("/")[0]


def site_limit_for_plan(plan: Optional[str]) -> int:
    return PLAN_SITE_LIMITS.get(plan or "pro", PLAN_SITE_LIMITS["pro"])


def embed_code(site_id: str) -> str:
    return f'<script src="{settings.SCRIPT_URL}" data-site-id="{site_id}"></script>'


class SiteStore:
    """Site-scoped records on top of a BlobStore."""

    def __init__(self, blob: BlobStore):
        self.blob = blob

    # Sites

    def create_site(self, user_id: str, domain: str, nickname: Optional[str] = None) -> Dict[str, Any]:
        site = {
            "id": f"site_{secrets.token_hex(8)}",
            "userId": user_id,
            "domain": domain,
            "nickname": nickname,
            "createdAt": iso_now(),
        }
        self.blob.set(SITES, site["id"], site)
        add_to_index(self.blob, SITES, f"user_sites_{user_id}", site["id"])
        logger.info(f"Created site {site['id']} for {user_id}")
        return site

    def get_site(self, site_id: str) -> Optional[Dict[str, Any]]:
        if not site_id:
            return None
        return self.blob.get(SITES, site_id)

    def update_site(self, site_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        site = self.get_site(site_id)
        if not site:
            return None
        site.update(updates)
        site["updatedAt"] = iso_now()
        self.blob.set(SITES, site_id, site)
        return site

    def delete_site(self, site_id: str, user_id: str):
        self.blob.delete(SITES, site_id)
        remove_from_index(self.blob, SITES, f"user_sites_{user_id}", site_id)
        for token in read_index(self.blob, SHARES, f"site_shares_{site_id}"):
            self.blob.delete(SHARES, token)
        self.blob.delete(SHARES, f"site_shares_{site_id}")
        for entry in read_index(self.blob, ERRORS, f"site_errors_{site_id}"):
            self.blob.delete(ERRORS, entry["key"])
        self.blob.delete(ERRORS, f"site_errors_{site_id}")
        for key in read_index(self.blob, HISTORICAL, f"site_history_{site_id}"):
            self.blob.delete(HISTORICAL, key)
        self.blob.delete(HISTORICAL, f"site_history_{site_id}")

    def get_user_site_ids(self, user_id: str) -> List[str]:
        return read_index(self.blob, SITES, f"user_sites_{user_id}")

    def get_user_sites(self, user_id: str) -> List[Dict[str, Any]]:
        sites = []
        for site_id in self.get_user_site_ids(user_id):
            site = self.get_site(site_id)
            if site:
                sites.append(site)
        return sites

    # Public shares

    def create_share(
        self,
        site_id: str,
        user_id: str,
        expires_at: Optional[str] = None,
        password: Optional[str] = None,
        allowed_periods: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        share = {
            "token": f"share_{uuid.uuid4().hex[:16]}",
            "siteId": site_id,
            "userId": user_id,
            "createdAt": iso_now(),
            "expiresAt": expires_at,
            "password": password,
            "allowedPeriods": allowed_periods or list(DEFAULT_SHARE_PERIODS),
            "isActive": True,
        }
        self.blob.set(SHARES, share["token"], share)
        add_to_index(self.blob, SHARES, f"site_shares_{site_id}", share["token"])
        return share

    def get_share(self, token: str) -> Optional[Dict[str, Any]]:
        """Returns an active, unexpired share or None."""
        share = self.blob.get(SHARES, token)
        if not share or not share.get("isActive"):
            return None
        expires_at = parse_iso(share.get("expiresAt"))
        if expires_at and expires_at < utcnow():
            return None
        return share

    def get_site_shares(self, site_id: str) -> List[Dict[str, Any]]:
        shares = []
        for token in read_index(self.blob, SHARES, f"site_shares_{site_id}"):
            share = self.blob.get(SHARES, token)
            if share and share.get("isActive"):
                shares.append(share)
        return shares

    def revoke_share(self, token: str, user_id: str) -> bool:
        share = self.blob.get(SHARES, token)
        if not share or share["userId"] != user_id:
            return False
        share["isActive"] = False
        share["deletedAt"] = iso_now()
        self.blob.set(SHARES, token, share)
        return True

    # Client error reports

    def log_error(self, site_id: str, error_type: str, url: str, extra: Dict[str, Any]) -> Dict[str, Any]:
        """
        Stores a client-side error. Reports for the same site, type and URL
        inside the dedup window only bump the count.
        Returns {"error": record, "deduplicated": bool}.
        """
        key = f"{site_id}_{error_type}_{re.sub(r'[^a-zA-Z0-9]', '_', url)}"
        now = utcnow()
        existing = self.blob.get(ERRORS, key)
        if existing:
            last_seen = parse_iso(existing.get("last_seen"))
            if last_seen and (now - last_seen).total_seconds() < settings.ERROR_DEDUP_WINDOW_SECONDS:
                existing["count"] = existing.get("count", 1) + 1
                existing["last_seen"] = now.isoformat()
                self.blob.set(ERRORS, key, existing)
                return {"error": existing, "deduplicated": True}

        record = {
            "id": f"error_{uuid.uuid4().hex[:12]}",
            "site_id": site_id,
            "type": error_type,
            "url": url,
            "referrer": extra.get("referrer"),
            "user_agent": extra.get("user_agent"),
            "message": extra.get("message"),
            "stack": extra.get("stack"),
            "metadata": extra.get("metadata"),
            "count": 1,
            "first_seen": now.isoformat(),
            "last_seen": now.isoformat(),
        }
        self.blob.set(ERRORS, key, record)
        index_key = f"site_errors_{site_id}"
        entries = [e for e in read_index(self.blob, ERRORS, index_key) if e["key"] != key]
        entries.insert(0, {"key": key, "timestamp": record["first_seen"]})
        for evicted in entries[ERROR_INDEX_LIMIT:]:
            self.blob.delete(ERRORS, evicted["key"])
        self.blob.set(ERRORS, index_key, entries[:ERROR_INDEX_LIMIT])
        return {"error": record, "deduplicated": False}

    def list_errors(self, site_id: str, error_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        errors = []
        for entry in read_index(self.blob, ERRORS, f"site_errors_{site_id}"):
            error = self.blob.get(ERRORS, entry["key"])
            if error and (not error_type or error["type"] == error_type):
                errors.append(error)
            if len(errors) >= limit:
                break
        errors.sort(key=lambda e: e["last_seen"], reverse=True)
        return errors[:limit]

    # Imported history

    def save_import(self, record: Dict[str, Any], days: List[Dict[str, Any]]) -> int:
        """Merges day rows into the historical store, numbers summed. Returns the count stored."""
        day_keys = []
        for day in days:
            key = f"{record['siteId']}_{day.get('date') or 'unknown'}_imported"
            merged = self.blob.get(HISTORICAL, key) or {}
            for field, value in day.items():
                if field.startswith("_"):
                    continue
                if isinstance(value, (int, float)) and isinstance(merged.get(field), (int, float)):
                    merged[field] = merged[field] + value
                else:
                    merged[field] = value
            merged.update({"_imported": True, "_importId": record["id"], "_source": record["source"]})
            self.blob.set(HISTORICAL, key, merged)
            add_to_index(self.blob, HISTORICAL, f"site_history_{record['siteId']}", key)
            day_keys.append(key)

        record["storedCount"] = len(day_keys)
        record["dayKeys"] = day_keys
        self.blob.set(IMPORTS, record["id"], record)
        add_to_index(
            self.blob,
            IMPORTS,
            f"user_imports_{record['userId']}",
            {
                "id": record["id"],
                "siteId": record["siteId"],
                "source": record["source"],
                "recordCount": record["recordCount"],
                "importedAt": record["importedAt"],
            },
            limit=IMPORT_HISTORY_LIMIT,
            prepend=True,
        )
        return len(day_keys)

    def get_import(self, import_id: str) -> Optional[Dict[str, Any]]:
        return self.blob.get(IMPORTS, import_id)

    def list_imports(self, user_id: str) -> List[Dict[str, Any]]:
        return read_index(self.blob, IMPORTS, f"user_imports_{user_id}")

    def delete_import(self, record: Dict[str, Any]) -> int:
        deleted = 0
        for key in record.get("dayKeys", []):
            day = self.blob.get(HISTORICAL, key)
            if day and day.get("_importId") == record["id"]:
                self.blob.delete(HISTORICAL, key)
                remove_from_index(self.blob, HISTORICAL, f"site_history_{record['siteId']}", key)
                deleted += 1
        self.blob.delete(IMPORTS, record["id"])
        history = [i for i in self.list_imports(record["userId"]) if i["id"] != record["id"]]
        self.blob.set(IMPORTS, f"user_imports_{record['userId']}", history)
        return deleted

    def get_imported_days(self, site_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Imported day rows with start_date <= date <= end_date (YYYY-MM-DD strings)."""
        days = []
        for key in read_index(self.blob, HISTORICAL, f"site_history_{site_id}"):
            day = self.blob.get(HISTORICAL, key)
            if day and day.get("date") and start_date <= day["date"] <= end_date:
                days.append(day)
        days.sort(key=lambda d: d["date"])
        return days
