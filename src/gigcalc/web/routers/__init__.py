from gigcalc.web.routers.auth import router as auth_router
from gigcalc.web.routers.calculations import router as calculations_router
from gigcalc.web.routers.user import router as user_router

__all__ = [
    "auth_router",
    "calculations_router",
    "user_router",
]
