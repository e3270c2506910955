from marketplace.models.user import User
from marketplace.models.item import Category, Item
from marketplace.models.history import History

__all__ = [
    "User",
    "Category",
    "Item",
    "History",
]
