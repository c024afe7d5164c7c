"""Database layer - engine, base classes, types, and immutability."""

from intake_kernel.db.base import UUID, Base, OrganizationScoped, TrackedBase, UUIDString
from intake_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from intake_kernel.db.types import CurrencyCode, Money, Quantity, Rate

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "OrganizationScoped",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "Quantity",
    "CurrencyCode",
]
