"""API routers."""

from scheduling_core.routers.appointments import router as appointments_router
from scheduling_core.routers.appointment_actions import router as appointment_actions_router
from scheduling_core.routers.internal import router as internal_router

__all__ = [
    "appointments_router",
    "appointment_actions_router",
    "internal_router",
]
