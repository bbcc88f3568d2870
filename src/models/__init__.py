"""Database model type definitions."""

from src.models.catalog import ComplimentaryGift, DiscountCode, Product, ProductVariant
from src.models.order import Order, OrderDetail, OrderItem, OrderStatus, OrderStatusHistory
from src.models.payment import Payment, PaymentStatus

__all__ = [
    "ComplimentaryGift",
    "DiscountCode",
    "Order",
    "OrderDetail",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "Payment",
    "PaymentStatus",
    "Product",
    "ProductVariant",
]
