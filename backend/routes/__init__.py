# Consolidated route imports
from .cart import router as cart_router
from .events import router as events_router
from .health import router as health_router
from .orders import router as orders_router
from .products import router as products_router
from .user import router as user_router

# Export all routers for easy importing
__all__ = [
    "cart_router",
    "events_router",
    "health_router",
    "orders_router",
    "products_router",
    "user_router",
]
