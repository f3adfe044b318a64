from cardbinder.db.change_feed import ChangeFeed, Subscription
from cardbinder.db.database import get_session, init_db
from cardbinder.db.gateway import (
    BINDER_ENTRIES,
    BINDERS,
    COLLECTED_CARDS,
    PersistenceGateway,
    SqlAlchemyGateway,
)

__all__ = [
    "BINDERS",
    "BINDER_ENTRIES",
    "COLLECTED_CARDS",
    "ChangeFeed",
    "PersistenceGateway",
    "SqlAlchemyGateway",
    "Subscription",
    "get_session",
    "init_db",
]
