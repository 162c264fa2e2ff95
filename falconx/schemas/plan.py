"""Plan reference data and plan-usage response schemas."""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict

from falconx.schemas.base import CamelModel

AlertLevel = Literal["success", "warning", "danger"]

WARNING_THRESHOLD = 80
DANGER_THRESHOLD = 100


class PlanConfig(TypedDict):
    name: str
    slug: str
    price: Decimal
    clone_limit: int
    domain_limit: int  # -1 = unlimited
    extra_clone_price: Decimal
    features: list[str]


# Plan limits configuration
PLAN_CONFIGS: dict[str, PlanConfig] = {
    "free": {
        "name": "Gratuito",
        "slug": "free",
        "price": Decimal("0.00"),
        "clone_limit": 1,
        "domain_limit": 1,
        "extra_clone_price": Decimal("0.00"),  # No extras on free
        "features": [
            "1 clone detectável por mês",
            "1 domínio monitorado",
            "Detecção básica",
            "Suporte por email",
        ],
    },
    "bronze": {
        "name": "Bronze",
        "slug": "bronze",
        "price": Decimal("39.90"),
        "clone_limit": 5,
        "domain_limit": 3,
        "extra_clone_price": Decimal("1.00"),
        "features": [
            "5 clones detectáveis por mês",
            "3 domínios monitorados",
            "Detecção avançada",
            "Clones extras: R$ 1,00 cada",
            "Suporte prioritário",
        ],
    },
    "silver": {
        "name": "Prata",
        "slug": "silver",
        "price": Decimal("79.90"),
        "clone_limit": 10,
        "domain_limit": 5,
        "extra_clone_price": Decimal("1.00"),
        "features": [
            "10 clones detectáveis por mês",
            "5 domínios monitorados",
            "Detecção em tempo real",
            "Clones extras: R$ 1,00 cada",
            "Relatórios detalhados",
            "Suporte prioritário",
        ],
    },
    "gold": {
        "name": "Ouro",
        "slug": "gold",
        "price": Decimal("149.90"),
        "clone_limit": 20,
        "domain_limit": 10,
        "extra_clone_price": Decimal("1.00"),
        "features": [
            "20 clones detectáveis por mês",
            "10 domínios monitorados",
            "Detecção instantânea",
            "Clones extras: R$ 1,00 cada",
            "API personalizada",
            "Relatórios avançados",
            "Suporte 24/7",
        ],
    },
    "diamond": {
        "name": "Diamante",
        "slug": "diamond",
        "price": Decimal("299.90"),
        "clone_limit": 50,
        "domain_limit": -1,
        "extra_clone_price": Decimal("1.00"),
        "features": [
            "50 clones detectáveis por mês",
            "Domínios ilimitados",
            "Detecção instantânea",
            "Clones extras: R$ 1,00 cada",
            "API dedicada",
            "Relatórios personalizados",
            "Suporte dedicado",
            "Consultoria inclusa",
        ],
    },
}


def get_plan_info(slug: str | None) -> PlanConfig:
    """Plan configuration by slug; unknown slugs fall back to free."""
    return PLAN_CONFIGS.get(slug or "free", PLAN_CONFIGS["free"])


def can_add_more_domains(slug: str, current_domains: int) -> bool:
    """Check whether another allowed domain fits in the plan."""
    limit = get_plan_info(slug)["domain_limit"]
    if limit == -1:
        return True
    return current_domains < limit


def calculate_usage_progress(current_clones: int, clone_limit: int) -> float:
    """Usage progress as a 0-100 percentage."""
    if clone_limit <= 0:
        return 0.0
    return min(current_clones / clone_limit * 100, 100.0)


def get_alert_level(progress: float) -> AlertLevel:
    if progress >= DANGER_THRESHOLD:
        return "danger"
    if progress >= WARNING_THRESHOLD:
        return "warning"
    return "success"


def calculate_extra_cost(extra_clones: int, extra_clone_price: Decimal) -> Decimal:
    return extra_clones * extra_clone_price


def days_until_reset(reset_date: datetime, now: datetime) -> int:
    """Whole days (rounded up) until the next quota reset."""
    return math.ceil((reset_date - now).total_seconds() / 86400)


# Response schemas
class PlanUser(CamelModel):
    id: uuid.UUID
    email: str
    full_name: str | None = None


class PlanDetails(CamelModel):
    slug: str
    name: str
    price: float
    clone_limit: int
    domain_limit: int
    extra_clone_price: float
    features: list[str]


class SubscriptionDetails(CamelModel):
    status: str
    started_at: datetime
    reset_date: datetime
    next_reset_date: datetime


class UsageDetails(CamelModel):
    current_clones: int
    clone_limit: int
    extra_clones: int
    blocked_clones: int
    usage_progress: float
    can_detect_more: bool
    alert_level: AlertLevel
    reset_date: datetime
    days_until_reset: int
    extra_cost: float
    last_updated: datetime


class PlanUsageResponse(CamelModel):
    """Response of the plan-usage query."""

    success: bool = True
    user: PlanUser
    plan: PlanDetails
    subscription: SubscriptionDetails
    usage: UsageDetails
