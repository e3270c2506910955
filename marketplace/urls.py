from django.urls import path

from marketplace.views import (
    BalanceView,
    CategoryListView,
    ItemCollectionView,
    ItemDetailView,
    ItemImageView,
    LoginView,
    PurchaseView,
    RegisterView,
    SearchDetailView,
    SearchView,
    SellView,
    UserItemsView,
)

urlpatterns = [
    path("register", RegisterView.as_view(), name="register"),
    path("login", LoginView.as_view(), name="login"),
    path("items", ItemCollectionView.as_view(), name="item-list"),
    path("items/categories", CategoryListView.as_view(), name="category-list"),
    path("items/<int:item_id>", ItemDetailView.as_view(), name="item-detail"),
    path("items/<int:item_id>/image", ItemImageView.as_view(), name="item-image"),
    path("sell", SellView.as_view(), name="item-sell"),
    path("purchase/<int:item_id>", PurchaseView.as_view(), name="item-purchase"),
    path("balance", BalanceView.as_view(), name="balance"),
    path("users/<int:user_id>/items", UserItemsView.as_view(), name="user-items"),
    path("search", SearchView.as_view(), name="search"),
    path("search/detail", SearchDetailView.as_view(), name="search-detail"),
]
