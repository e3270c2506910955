from rest_framework import serializers

from marketplace.models import Category, Item
from marketplace.store import ItemFilter, ItemPatch


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ("id", "name")
        read_only_fields = fields


class ItemSummarySerializer(serializers.ModelSerializer):
    """Read-only row used by browse, search and seller listings."""

    category_name = serializers.CharField(source="category.name", read_only=True)

    class Meta:
        model = Item
        fields = ("id", "name", "price", "category_name", "status")
        read_only_fields = fields


class ItemDetailSerializer(serializers.ModelSerializer):
    """
    Read-only item detail.

    Expects ``category_name`` and ``views`` in the serializer context since
    neither is a column of the item row.
    """

    category_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(source="seller_id", read_only=True)
    category_name = serializers.SerializerMethodField()
    views = serializers.SerializerMethodField()

    class Meta:
        model = Item
        fields = (
            "id",
            "name",
            "category_id",
            "category_name",
            "user_id",
            "price",
            "description",
            "status",
            "views",
        )
        read_only_fields = fields

    def get_category_name(self, obj):
        return self.context.get("category_name", "")

    def get_views(self, obj):
        return self.context.get("views", 0)


class AddItemSerializer(serializers.Serializer):
    """Validates multipart item creation requests."""

    name = serializers.CharField(max_length=255)
    category_id = serializers.IntegerField()
    price = serializers.IntegerField(min_value=1)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    image = serializers.FileField()


class EditItemSerializer(serializers.Serializer):
    """
    Validates multipart item edits.

    Every field is optional. Empty strings and zeros mean "leave unchanged".
    """

    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    category_id = serializers.IntegerField(required=False, min_value=0)
    price = serializers.IntegerField(required=False, min_value=0)
    description = serializers.CharField(required=False, allow_blank=True)
    image = serializers.FileField(required=False)

    def to_patch(self) -> ItemPatch:
        data = self.validated_data
        image = data.get("image")
        return ItemPatch(
            name=data.get("name") or None,
            price=data.get("price") or None,
            description=data.get("description") or None,
            category_id=data.get("category_id") or None,
            image=image.read() if image is not None else None,
        )


class SellSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(min_value=1)
    user_id = serializers.IntegerField(required=False, min_value=0, default=0)


class SearchSerializer(serializers.Serializer):
    """
    Validates ``/search/detail`` query parameters.

    Hyphenated query keys (``price-min``) are expected to arrive with
    underscores; the view renames them.
    """

    name = serializers.CharField(required=False, allow_blank=True, default="")
    price_min = serializers.IntegerField(required=False, default=1)
    price_max = serializers.IntegerField(required=False, allow_null=True, default=None)
    category = serializers.IntegerField(required=False, allow_null=True, default=None)
    is_include_soldout = serializers.BooleanField(required=False, default=False)

    def to_filter(self) -> ItemFilter:
        data = self.validated_data
        statuses = (Item.Status.ON_SALE,)
        if data["is_include_soldout"]:
            statuses = (Item.Status.ON_SALE, Item.Status.SOLD_OUT)
        return ItemFilter(
            name=data["name"],
            price_min=data["price_min"],
            price_max=data["price_max"],
            category_id=data["category"],
            statuses=statuses,
        )
