from cardbinder.models.binder import (
    Binder,
    BinderEntry,
    ReorderResult,
    VirtualBinder,
    is_system_binder,
    sort_entries,
)
from cardbinder.models.card import Card, SetSummary
from cardbinder.models.favorites import FavoriteEntry
from cardbinder.models.failure import (
    BinderNotFoundError,
    EntryNotFoundError,
    FavoriteNotFoundError,
    FailureDetail,
    FailureKind,
    GatewayError,
    InvalidBinderSizeError,
    KnownError,
    PersistenceError,
    SessionScopeError,
    SystemBinderError,
)
from cardbinder.models.preferences import CollectionPreferences, RarityThresholds

__all__ = [
    "Binder",
    "BinderEntry",
    "BinderNotFoundError",
    "Card",
    "CollectionPreferences",
    "EntryNotFoundError",
    "FailureDetail",
    "FailureKind",
    "FavoriteEntry",
    "FavoriteNotFoundError",
    "GatewayError",
    "InvalidBinderSizeError",
    "KnownError",
    "PersistenceError",
    "RarityThresholds",
    "ReorderResult",
    "SessionScopeError",
    "SetSummary",
    "SystemBinderError",
    "VirtualBinder",
    "is_system_binder",
    "sort_entries",
]
