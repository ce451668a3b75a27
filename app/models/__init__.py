from app.models.address import Address
from app.models.cart import CartItem
from app.models.order import Order
from app.models.order_item import OrderItem
from app.models.product import Product
from app.models.user import User

__all__ = ["Address", "CartItem", "Order", "OrderItem", "Product", "User"]
