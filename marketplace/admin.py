from django.contrib import admin

from marketplace.models import Category, History, Item, User


class ReadOnlyAdminMixin:
    """
    Mixin that makes an admin model completely read-only.

    Balances and item status may only change through the services, which
    enforce the marketplace's transactional rules.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "name", "balance", "created_at", "updated_at")
    search_fields = ("name",)
    exclude = ("password",)


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("id", "name")
    search_fields = ("name",)


@admin.register(Item)
class ItemAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "name",
        "price",
        "status",
        "category",
        "seller",
        "created_at",
        "updated_at",
    )
    list_filter = ("status", "category")
    search_fields = ("name",)
    exclude = ("image",)


@admin.register(History)
class HistoryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "item", "viewer", "created_at")
    list_filter = ("created_at",)
