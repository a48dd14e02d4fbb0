from . import (
    auth,
    blends,
    buyers,
    fibres,
    orders,
)

__all__ = [
    "auth",
    "blends",
    "buyers",
    "fibres",
    "orders",
]
