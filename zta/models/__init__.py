from zta.models.event import AnalyticsEvent, TrackPayload, EVENT_TYPES
from zta.models.account import (
    PLANS,
    RegisterRequest,
    LoginRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    DeleteAccountRequest,
    ApiKeyCreate,
    ApiKeyUpdate,
)
from zta.models.site import SiteCreate, SiteUpdate, ShareCreate, ErrorReport, ImportRequest, HeatmapRecord
from zta.models.rules import (
    GoalCreate,
    GoalUpdate,
    FunnelStep,
    FunnelCreate,
    FunnelUpdate,
    AlertCreate,
    AlertUpdate,
    AnnotationCreate,
    AnnotationUpdate,
    WebhookCreate,
    WebhookUpdate,
    TeamAction,
    InviteAccept,
    loose_dict,
)
