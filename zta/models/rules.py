from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel, Field

class GoalCreate(SQLModel):
    siteId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    metric: Optional[str] = "pageviews"
    target: Optional[Any] = None
    period: Optional[str] = "daily"
    comparison: Optional[str] = "gte"
    notifyOnComplete: bool = False

class GoalUpdate(SQLModel):
    goalId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    metric: Optional[str] = None
    target: Optional[Any] = None
    period: Optional[str] = None
    comparison: Optional[str] = None
    notifyOnComplete: Optional[bool] = None

class FunnelStep(SQLModel):
    type: str = "page"
    value: str = Field(max_length=500)
    name: Optional[str] = Field(default=None, max_length=100)

class FunnelCreate(SQLModel):
    """
    A funnel is an ordered list of page or event steps.
    """
    siteId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    steps: List[FunnelStep] = []

class FunnelUpdate(SQLModel):
    funnelId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    steps: Optional[List[FunnelStep]] = None

class AlertCreate(SQLModel):
    """
    Numeric settings arrive loosely typed from the dashboard and are
    clamped to their allowed ranges by the handler.
    """
    siteId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    type: Optional[str] = "traffic_spike"
    threshold: Optional[Any] = None
    timeWindow: Optional[Any] = None
    cooldown: Optional[Any] = None
    notifyWebhook: Optional[Any] = None
    notifyEmail: Optional[bool] = True

class AlertUpdate(SQLModel):
    alertId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    type: Optional[str] = None
    threshold: Optional[Any] = None
    timeWindow: Optional[Any] = None
    cooldown: Optional[Any] = None
    notifyWebhook: Optional[bool] = None
    notifyEmail: Optional[bool] = None
    isActive: Optional[bool] = None

class AnnotationCreate(SQLModel):
    siteId: Optional[str] = None
    date: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = "#6366f1"
    icon: Optional[str] = None

class AnnotationUpdate(SQLModel):
    annotationId: Optional[str] = None
    date: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = None
    icon: Optional[str] = None

class WebhookCreate(SQLModel):
    """
    Either a new webhook, or action="test" with a webhookId to send a
    test delivery.
    """
    action: Optional[str] = None
    webhookId: Optional[str] = None
    siteId: Optional[str] = None
    url: Optional[str] = Field(default=None, max_length=2000)
    events: Optional[List[str]] = None
    name: Optional[str] = Field(default=None, max_length=100)

class WebhookUpdate(SQLModel):
    webhookId: Optional[str] = None
    url: Optional[str] = Field(default=None, max_length=2000)
    events: Optional[List[str]] = None
    name: Optional[str] = Field(default=None, max_length=100)
    isActive: Optional[bool] = None

class TeamAction(SQLModel):
    action: Optional[str] = None
    teamId: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = None
    role: Optional[str] = None
    siteId: Optional[str] = None
    memberId: Optional[str] = None

class InviteAccept(SQLModel):
    token: Optional[str] = None

def loose_dict(model: SQLModel) -> Dict[str, Any]:
    """Fields the client actually sent."""
    return model.model_dump(exclude_unset=True)
