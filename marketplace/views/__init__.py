from marketplace.views.account import BalanceView, LoginView, RegisterView
from marketplace.views.item import (
    CategoryListView,
    ItemCollectionView,
    ItemDetailView,
    ItemImageView,
    SearchDetailView,
    SearchView,
    SellView,
    UserItemsView,
)
from marketplace.views.purchase import PurchaseView

__all__ = [
    "BalanceView",
    "LoginView",
    "RegisterView",
    "CategoryListView",
    "ItemCollectionView",
    "ItemDetailView",
    "ItemImageView",
    "SearchDetailView",
    "SearchView",
    "SellView",
    "UserItemsView",
    "PurchaseView",
]
