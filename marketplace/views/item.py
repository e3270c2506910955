import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from marketplace.exceptions import MarketplaceError
from marketplace.serializers import (
    AddItemSerializer,
    CategorySerializer,
    EditItemSerializer,
    ItemDetailSerializer,
    ItemSummarySerializer,
    SearchSerializer,
    SellSerializer,
)
from marketplace.services import ItemService
from marketplace.views.base import MarketplaceAPIView, error_response, not_found_response

logger = logging.getLogger(__name__)


class ItemCollectionView(MarketplaceAPIView):
    """
    GET /items — Items on sale, most recently updated first.
    POST /items — Add an item (multipart form with an ``image`` file).

    Form fields: name, category_id, price, description, image
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsAuthenticated()]
        return [AllowAny()]

    def get(self, request, *args, **kwargs):
        items = ItemService(self.get_store()).browse()
        if not items:
            return not_found_response("There is no item on sale.")
        return Response(ItemSummarySerializer(items, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = AddItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            item = ItemService(self.get_store()).add(
                seller_id=request.user.user_id,
                name=data["name"],
                price=data["price"],
                category_id=data["category_id"],
                description=data["description"],
                image=data["image"].read(),
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"id": item.pk}, status=status.HTTP_200_OK)


class ItemDetailView(MarketplaceAPIView):
    """
    GET /items/<item_id> — Item detail with view count. Records the view,
    attributed to the caller when a token is sent.
    PUT /items/<item_id> — Edit an item owned by the caller (multipart form,
    every field optional).
    """

    def get_permissions(self):
        if self.request.method == "PUT":
            return [IsAuthenticated()]
        return [AllowAny()]

    def get(self, request, item_id, *args, **kwargs):
        viewer_id = request.user.user_id if request.user else None

        try:
            detail = ItemService(self.get_store()).detail(item_id, viewer_id=viewer_id)
        except MarketplaceError as exc:
            return error_response(exc)

        serializer = ItemDetailSerializer(
            detail.item,
            context={"category_name": detail.category_name, "views": detail.views},
        )
        return Response(serializer.data)

    def put(self, request, item_id, *args, **kwargs):
        serializer = EditItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            edited_id = ItemService(self.get_store()).edit(
                item_id=item_id,
                seller_id=request.user.user_id,
                patch=serializer.to_patch(),
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"id": edited_id}, status=status.HTTP_200_OK)


class ItemImageView(MarketplaceAPIView):
    """GET /items/<item_id>/image — Raw image bytes."""

    def get(self, request, item_id, *args, **kwargs):
        try:
            data = ItemService(self.get_store()).image(item_id)
        except MarketplaceError as exc:
            return error_response(exc)

        return HttpResponse(data, content_type="image/jpeg")


class CategoryListView(MarketplaceAPIView):
    """GET /items/categories — All categories."""

    def get(self, request, *args, **kwargs):
        categories = ItemService(self.get_store()).categories()
        if not categories:
            return not_found_response("No categories in database.")
        return Response(CategorySerializer(categories, many=True).data)


class UserItemsView(MarketplaceAPIView):
    """GET /users/<user_id>/items — Every item of a seller, in any status."""

    def get(self, request, user_id, *args, **kwargs):
        items = ItemService(self.get_store()).items_of_seller(user_id)
        if not items:
            return not_found_response(f"No items found for user {user_id}.")
        return Response(ItemSummarySerializer(items, many=True).data)


class SearchView(MarketplaceAPIView):
    """GET /search?name=<substring> — Items of any status whose name contains the term."""

    def get(self, request, *args, **kwargs):
        name = request.query_params.get("name", "")
        items = ItemService(self.get_store()).search_by_name(name)
        if not items:
            return not_found_response("There is no item containing the name.")
        return Response(ItemSummarySerializer(items, many=True).data)


class SearchDetailView(MarketplaceAPIView):
    """
    GET /search/detail — Filtered search.

    Query params:
        - name: Name substring
        - price-min / price-max: Inclusive price bounds (min defaults to 1)
        - category: Category id
        - is-include-soldout: Also return SOLD_OUT items (default false)
    """

    def get(self, request, *args, **kwargs):
        params = {
            key.replace("-", "_"): value
            for key, value in request.query_params.items()
            if value != ""
        }
        serializer = SearchSerializer(data=params)
        serializer.is_valid(raise_exception=True)

        try:
            items = ItemService(self.get_store()).search(serializer.to_filter())
        except MarketplaceError as exc:
            return error_response(exc)

        if not items:
            return not_found_response("There is no item containing the name.")
        return Response(ItemSummarySerializer(items, many=True).data)


class SellView(MarketplaceAPIView):
    """
    POST /sell — Put one of the caller's INITIAL items on sale.

    Request body: {"item_id": <int>, "user_id": <optional int>}
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = SellSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            item = ItemService(self.get_store()).list_for_sale(
                seller_id=request.user.user_id,
                item_id=serializer.validated_data["item_id"],
                claimed_seller_id=serializer.validated_data["user_id"] or None,
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"id": item.pk, "status": item.status}, status=status.HTTP_200_OK)
