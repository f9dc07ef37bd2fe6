# Services package - Consolidated imports only
from .events import EventService
from .user import UserService
from .products import ProductService
from .cart import CartService
from .orders import OrderService
from .welcome import WelcomeRelay
from .notification import NotificationDispatchRelay, LoggingNotificationSender, NotificationSender
