"""
Zero-trust primitives used by the ingestion pipeline.

Visitors are identified by a hash of IP, user agent and a salt that rotates
at midnight UTC, so the same visitor is countable within a day but cannot be
linked across days. Raw IPs and user agents never leave this module.
"""
import hashlib
import hmac
import json
import logging
import re
import secrets
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit, parse_qs

logger = logging.getLogger("ZTA.Core")

BOT_PATTERNS = re.compile(
    r"bot|crawler|spider|scraper|crawling|headless|phantom|selenium|webdriver|puppeteer|playwright"
    r"|lighthouse|pingdom|uptimerobot|statuscake|monitor|preview|facebookexternalhit|slurp"
    r"|curl|wget|python-requests|python-urllib|httpx|aiohttp|go-http-client|java/|okhttp|libwww|axios",
    re.IGNORECASE,
)

SEARCH_ENGINES = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex", "ecosia", "startpage")
SOCIAL_NETWORKS = (
    "facebook", "twitter", "t.co", "x.com", "linkedin", "instagram", "pinterest",
    "reddit", "tiktok", "youtube", "mastodon", "threads.net", "news.ycombinator",
)

PII_PATTERNS = [
    ("IPv4", re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")),
    ("IPv6", re.compile(r"\b(?:[A-Fa-f0-9]{1,4}:){7}[A-Fa-f0-9]{1,4}\b")),
    ("Email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("Phone", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
]


def get_daily_salt(secret: str, day: Optional[date] = None) -> str:
    """HMAC-SHA256 of the UTC date with the server secret."""
    day = day or datetime.now(timezone.utc).date()
    return hmac.new(secret.encode(), day.isoformat().encode(), hashlib.sha256).hexdigest()


def create_identity_hash(ip: str, user_agent: str, secret: str, day: Optional[date] = None) -> str:
    salt = get_daily_salt(secret, day)
    return hashlib.sha256(f"{ip}|{user_agent}|{salt}".encode()).hexdigest()


def create_session_hash() -> str:
    return secrets.token_hex(16)


def parse_context(user_agent: Optional[str]) -> Dict[str, str]:
    """Categorical device, browser and OS. Versions are deliberately dropped."""
    ua = user_agent or ""

    device = "desktop"
    if re.search(r"Mobile|Android|iPhone|iPad", ua, re.I):
        device = "tablet" if re.search(r"iPad|Tablet", ua, re.I) else "mobile"

    browser = "other"
    if re.search(r"Firefox", ua, re.I):
        browser = "firefox"
    elif re.search(r"Edg", ua, re.I):
        browser = "edge"
    elif re.search(r"OPR|Opera", ua, re.I):
        browser = "opera"
    elif re.search(r"Chrome", ua, re.I):
        browser = "chrome"
    elif re.search(r"Safari", ua, re.I):
        browser = "safari"

    os_name = "other"
    if re.search(r"Windows", ua, re.I):
        os_name = "windows"
    elif re.search(r"iPhone|iPad|iOS", ua, re.I):
        os_name = "ios"
    elif re.search(r"Mac OS", ua, re.I):
        os_name = "macos"
    elif re.search(r"Android", ua, re.I):
        os_name = "android"
    elif re.search(r"Linux", ua, re.I):
        os_name = "linux"

    return {"device": device, "browser": browser, "os": os_name}


def parse_geo(headers: Mapping[str, str]) -> Dict[str, str]:
    """Country and region from edge headers. No IP lookups."""
    return {
        "country": headers.get("x-country") or headers.get("cf-ipcountry") or "unknown",
        "region": headers.get("x-nf-client-connection-region") or headers.get("cf-region") or "unknown",
    }


def is_bot(user_agent: Optional[str]) -> bool:
    if not user_agent or not user_agent.strip():
        return True
    return bool(BOT_PATTERNS.search(user_agent))


def clean_path(path: Optional[str]) -> str:
    """Strips query string and fragment from a path or URL."""
    if not path:
        return "/"
    parts = urlsplit(path)
    cleaned = parts.path or "/"
    if not cleaned.startswith("/"):
        cleaned = "/" + cleaned
    return cleaned[:500]


def utm_from_url(url: Optional[str]) -> Dict[str, str]:
    if not url:
        return {}
    query = parse_qs(urlsplit(url).query)
    return {
        key[4:]: values[0][:100]
        for key, values in query.items()
        if key in ("utm_source", "utm_medium", "utm_campaign") and values
    }


def referrer_domain(referrer: Optional[str], site_domain: Optional[str] = None) -> Optional[str]:
    """
    Reduces a referrer URL to its bare host. Self-referrals and malformed
    values return None.
    """
    if not referrer:
        return None
    host = urlsplit(referrer if "//" in referrer else f"//{referrer}").hostname
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    if site_domain:
        site = site_domain.lower()
        if site.startswith("www."):
            site = site[4:]
        if host == site or host.endswith("." + site):
            return None
    return host


def classify_source(domain: Optional[str], utm: Optional[Mapping[str, str]] = None) -> str:
    if utm and (utm.get("source") or utm.get("campaign")):
        return "campaign"
    if not domain:
        return "direct"
    if any(engine in domain for engine in SEARCH_ENGINES):
        return "search"
    if any(network in domain for network in SOCIAL_NETWORKS):
        return "social"
    return "referral"


def validate_no_pii(data: Any) -> bool:
    """
    Returns False when any IPv4, full IPv6, email or phone pattern appears
    in the serialized data. Call it on visitor-supplied fields only.
    """
    text = data if isinstance(data, str) else json.dumps(data, default=str)
    for name, pattern in PII_PATTERNS:
        if pattern.search(text):
            logger.warning(f"PII pattern matched: {name}")
            return False
    return True


def create_record(
    site_id: str,
    ip: str,
    user_agent: str,
    headers: Mapping[str, str],
    secret: str,
    event_type: str = "pageview",
    path: str = "/",
    referrer: Optional[str] = None,
    site_domain: Optional[str] = None,
    session_id: Optional[str] = None,
    utm: Optional[Mapping[str, str]] = None,
    payload: Optional[Dict[str, Any]] = None,
    is_bounce: bool = False,
    duration: int = 0,
) -> Dict[str, Any]:
    """
    Builds the canonical event record. The result is JSON-serialisable so it
    can go straight onto the ingestion topic.
    """
    context = parse_context(user_agent)
    geo = parse_geo(headers)
    ref_domain = referrer_domain(referrer, site_domain)
    utm = {k: v for k, v in (utm or {}).items() if k in ("source", "medium", "campaign") and v}

    return {
        "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
        "site_id": site_id,
        "identity_hash": create_identity_hash(ip, user_agent, secret),
        "session_hash": session_id or create_session_hash(),
        "event_type": event_type,
        "path": clean_path(path),
        "referrer_domain": ref_domain,
        "traffic_source": classify_source(ref_domain, utm),
        "utm_source": utm.get("source"),
        "utm_medium": utm.get("medium"),
        "utm_campaign": utm.get("campaign"),
        "payload": payload or {},
        "context_device": context["device"],
        "context_browser": context["browser"],
        "context_os": context["os"],
        "context_country": geo["country"][:8],
        "context_region": geo["region"][:16],
        "is_bounce": bool(is_bounce),
        "duration": max(0, int(duration or 0)),
    }
