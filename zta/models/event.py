import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel, Column

EVENT_TYPES = ("pageview", "event", "engagement", "heartbeat")

class AnalyticsEvent(SQLModel, table=True):
    """
    A single tracked event with a hashed, non-reversible visitor identity.
    Converted to a TimescaleDB hypertable on PostgreSQL.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False
    )
    # Part of the key so the table can be partitioned on time
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        primary_key=True,
        nullable=False,
        index=True
    )

    site_id: str = Field(index=True)
    identity_hash: str = Field(index=True, max_length=64)
    session_hash: str = Field(index=True)
    event_type: str = Field(index=True, default="pageview")

    path: str = Field(default="/", index=True)
    referrer_domain: Optional[str] = None
    traffic_source: str = Field(default="direct")
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    # Event-specific data (category/action for events, scroll depth for engagement...)
    payload: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON().with_variant(JSONB, "postgresql"))
    )

    context_device: str = "desktop"
    context_browser: str = "other"
    context_os: str = "other"
    context_country: str = "unknown"
    context_region: str = "unknown"

    is_bounce: bool = False
    duration: int = 0


class TrackPayload(BaseModel):
    """
    The body the tracking script sends to /api/track.
    Unknown keys are ignored so older script versions keep working.
    """
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    siteId: Optional[str] = None
    path: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = PydanticField(default=None, max_length=500)
    referrer: Optional[str] = None
    sessionId: Optional[str] = PydanticField(default=None, max_length=64)
    landingPage: Optional[str] = None
    isNewVisitor: Optional[bool] = None
    isNewSession: Optional[bool] = None
    pageCount: Optional[int] = None

    # Custom events
    category: Optional[str] = PydanticField(default=None, max_length=100)
    action: Optional[str] = PydanticField(default=None, max_length=100)
    label: Optional[str] = PydanticField(default=None, max_length=200)
    value: Optional[float] = None

    # Engagement
    timeOnPage: Optional[int] = None
    sessionDuration: Optional[int] = None
    maxScrollDepth: Optional[int] = None
    isBounce: Optional[bool] = None
    isExitPage: Optional[bool] = None

    utm: Optional[Dict[str, str]] = None
