from datetime import date

from zta import core
from zta.api.track import origin_allowed

UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148 Safari/604.1"


def test_identity_hash_is_stable_within_a_day():
    day = date(2024, 3, 1)
    first = core.create_identity_hash("203.0.113.9", UA, "secret", day)
    second = core.create_identity_hash("203.0.113.9", UA, "secret", day)
    assert first == second
    assert len(first) == 64


def test_identity_hash_rotates_daily():
    first = core.create_identity_hash("203.0.113.9", UA, "secret", date(2024, 3, 1))
    second = core.create_identity_hash("203.0.113.9", UA, "secret", date(2024, 3, 2))
    assert first != second


def test_identity_hash_depends_on_secret():
    day = date(2024, 3, 1)
    assert core.create_identity_hash("1.1.1.1", UA, "a", day) != core.create_identity_hash("1.1.1.1", UA, "b", day)


def test_session_hash_is_random_hex():
    first, second = core.create_session_hash(), core.create_session_hash()
    assert first != second
    assert len(first) == 32
    int(first, 16)


def test_parse_context_mobile_safari():
    assert core.parse_context(UA) == {"device": "mobile", "browser": "safari", "os": "ios"}


def test_parse_context_tablet_and_desktop():
    ipad = "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) AppleWebKit/605.1.15 Mobile Safari/604.1"
    assert core.parse_context(ipad)["device"] == "tablet"
    firefox = "Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0"
    assert core.parse_context(firefox) == {"device": "desktop", "browser": "firefox", "os": "linux"}
    edge = "Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 Chrome/120.0 Safari/537.36 Edg/120.0"
    assert core.parse_context(edge)["browser"] == "edge"


def test_parse_context_unknown():
    assert core.parse_context(None) == {"device": "desktop", "browser": "other", "os": "other"}


def test_parse_geo_reads_edge_headers_only():
    assert core.parse_geo({"cf-ipcountry": "DE"}) == {"country": "DE", "region": "unknown"}
    assert core.parse_geo({}) == {"country": "unknown", "region": "unknown"}


def test_is_bot():
    assert core.is_bot("Googlebot/2.1 (+http://www.google.com/bot.html)")
    assert core.is_bot("curl/8.0.1")
    assert core.is_bot("Mozilla/5.0 HeadlessChrome/120.0")
    assert core.is_bot("")
    assert core.is_bot(None)
    assert not core.is_bot(UA)


def test_clean_path_strips_query_and_fragment():
    assert core.clean_path("/pricing?ref=abc#top") == "/pricing"
    assert core.clean_path("https://example.com/docs/intro?x=1") == "/docs/intro"
    assert core.clean_path(None) == "/"
    assert core.clean_path("about") == "/about"


def test_referrer_domain():
    assert core.referrer_domain("https://www.google.com/search?q=x") == "google.com"
    assert core.referrer_domain("https://blog.example.com/post", "example.com") is None
    assert core.referrer_domain("https://example.com/", "www.example.com") is None
    assert core.referrer_domain("news.ycombinator.com") == "news.ycombinator.com"
    assert core.referrer_domain("") is None


def test_classify_source():
    assert core.classify_source(None) == "direct"
    assert core.classify_source("google.com") == "search"
    assert core.classify_source("reddit.com") == "social"
    assert core.classify_source("somewhere.org") == "referral"
    assert core.classify_source("google.com", {"source": "newsletter"}) == "campaign"


def test_utm_from_url():
    utm = core.utm_from_url("https://example.com/?utm_source=nl&utm_campaign=spring&utm_term=x")
    assert utm == {"source": "nl", "campaign": "spring"}
    assert core.utm_from_url(None) == {}


def test_validate_no_pii_rejects_personal_data():
    assert not core.validate_no_pii({"path": "/user/jane@example.com"})
    assert not core.validate_no_pii({"title": "from 192.168.1.10"})
    assert not core.validate_no_pii("call 555-123-4567")
    assert not core.validate_no_pii("2001:0db8:85a3:0000:0000:8a2e:0370:7334")


def test_validate_no_pii_accepts_clean_data():
    assert core.validate_no_pii({"path": "/pricing", "title": "Pricing", "category": "cta"})
    assert core.validate_no_pii("/blog/2024/03/hello")


def test_create_record_contains_no_raw_identifiers():
    record = core.create_record(
        site_id="site_1",
        ip="203.0.113.9",
        user_agent=UA,
        headers={"x-country": "NL"},
        secret="secret",
        path="/pricing?x=1",
        referrer="https://www.google.com/",
        site_domain="example.com",
    )
    assert record["site_id"] == "site_1"
    assert record["path"] == "/pricing"
    assert record["referrer_domain"] == "google.com"
    assert record["traffic_source"] == "search"
    assert record["context_country"] == "NL"
    assert record["context_device"] == "mobile"
    values = " ".join(str(v) for v in record.values())
    assert "203.0.113.9" not in values
    assert "iPhone" not in values


def test_origin_allowed():
    assert origin_allowed(None, "example.com")
    assert origin_allowed("https://example.com", "example.com")
    assert origin_allowed("https://www.example.com", "example.com")
    assert origin_allowed("https://app.example.com", "www.example.com")
    assert origin_allowed("http://localhost:3000", "example.com")
    assert not origin_allowed("https://evil.com", "example.com")
    assert not origin_allowed("https://notexample.com", "example.com")
