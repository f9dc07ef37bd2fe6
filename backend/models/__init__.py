# Models package - Consolidated imports only
from .event import EventRecord
from .product import Product
from .cart import Cart, CartItem
from .order import Order, OrderItem, OrderStatus
