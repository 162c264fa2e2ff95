"""SQLAlchemy models package."""

from falconx.models.action import ActionType, CloneAction
from falconx.models.clone import DOMAIN_NOT_CONFIGURED, DetectedClone, DetectionLog
from falconx.models.domain import AllowedDomain
from falconx.models.plan import Plan, PlanSlug, Subscription, SubscriptionStatus
from falconx.models.script import GeneratedScript
from falconx.models.user import User

__all__ = [
    # User
    "User",
    # Domains
    "AllowedDomain",
    # Clones
    "DetectedClone",
    "DetectionLog",
    "DOMAIN_NOT_CONFIGURED",
    # Plans
    "Plan",
    "PlanSlug",
    "Subscription",
    "SubscriptionStatus",
    # Actions
    "CloneAction",
    "ActionType",
    # Scripts
    "GeneratedScript",
]
