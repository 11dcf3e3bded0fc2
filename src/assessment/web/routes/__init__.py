"""Route handlers for the web API."""

from assessment.web.routes.health import router as health_router
from assessment.web.routes.assignments import router as assignments_router
from assessment.web.routes.makeups import router as makeups_router
from assessment.web.routes.sweeps import router as sweeps_router

__all__ = [
    "health_router",
    "assignments_router",
    "makeups_router",
    "sweeps_router",
]
