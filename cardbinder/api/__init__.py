from cardbinder.api.binders import router as binders_router
from cardbinder.api.counts import router as counts_router
from cardbinder.api.favorites import router as favorites_router
from cardbinder.api.health import router as health_router
from cardbinder.api.preferences import router as preferences_router
from cardbinder.api.system import router as system_router

__all__ = [
    "binders_router",
    "counts_router",
    "favorites_router",
    "health_router",
    "preferences_router",
    "system_router",
]
