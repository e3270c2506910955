from marketplace.serializers.account import (
    BalanceSerializer,
    LoginSerializer,
    RegisterSerializer,
)
from marketplace.serializers.item import (
    AddItemSerializer,
    CategorySerializer,
    EditItemSerializer,
    ItemDetailSerializer,
    ItemSummarySerializer,
    SearchSerializer,
    SellSerializer,
)

__all__ = [
    "BalanceSerializer",
    "LoginSerializer",
    "RegisterSerializer",
    "AddItemSerializer",
    "CategorySerializer",
    "EditItemSerializer",
    "ItemDetailSerializer",
    "ItemSummarySerializer",
    "SearchSerializer",
    "SellSerializer",
]
