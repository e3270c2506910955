from django.db import models

from marketplace.models.base import BaseModel
from marketplace.models.user import User


class Category(models.Model):
    """Reference data grouping items. Read-only for the application."""

    name = models.CharField(max_length=255, unique=True)

    class Meta:
        db_table = "category"
        ordering = ["id"]
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


class Item(BaseModel):
    """
    A listing owned by a seller.

    Status only ever moves forward: INITIAL -> ON_SALE -> SOLD_OUT.
    Listing is done by the seller, SOLD_OUT is set by a purchase.
    """

    class Status(models.IntegerChoices):
        INITIAL = 1, "Initial"
        ON_SALE = 2, "On sale"
        SOLD_OUT = 3, "Sold out"

    name = models.CharField(max_length=255)
    price = models.BigIntegerField()
    description = models.TextField(blank=True, default="")
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name="items",
    )
    seller = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name="items",
    )
    image = models.BinaryField(blank=True, default=b"")
    status = models.PositiveSmallIntegerField(
        choices=Status.choices,
        default=Status.INITIAL,
    )

    class Meta(BaseModel.Meta):
        db_table = "items"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0), name="items_price_positive"
            ),
        ]
        indexes = [
            models.Index(fields=["status", "updated_at"], name="idx_status_updated"),
            models.Index(fields=["seller"], name="idx_items_seller"),
        ]

    def __str__(self):
        return f"Item {self.id} | {self.name} | {self.price} | {self.get_status_display()}"
