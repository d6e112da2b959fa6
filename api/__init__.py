"""
API Module
FastAPI routers for the PillPulse reminder engine
"""

from api.engine import router as engine_router

from api.deps import (
    get_detector,
    get_dispatcher,
    get_escalation_engine,
    get_scheduler,
    get_store,
)


__all__ = [
    # Routers
    "engine_router",
    # Dependencies
    "get_detector",
    "get_dispatcher",
    "get_escalation_engine",
    "get_scheduler",
    "get_store",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(engine_router, prefix=prefix)
