"""Test fixtures: row builders and request helpers."""

from tests.fixtures.factories import (
    add_allowed_domain,
    compact_ping,
    create_action,
    create_plan,
    create_subscription,
    create_user,
)

__all__ = [
    "add_allowed_domain",
    "compact_ping",
    "create_action",
    "create_plan",
    "create_subscription",
    "create_user",
]
