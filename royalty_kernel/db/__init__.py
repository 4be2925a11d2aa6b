"""Database layer - engine, base classes, unit of work, and immutability."""

from royalty_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from royalty_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from royalty_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from royalty_kernel.db.unit_of_work import RoyaltyUnitOfWork, UnitOfWorkTransaction

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "RoyaltyUnitOfWork",
    "UnitOfWorkTransaction",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
]
