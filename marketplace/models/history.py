from django.db import models

from marketplace.models.item import Item
from marketplace.models.user import User


class History(models.Model):
    """
    Append-only log of item detail views.

    ``viewer`` is NULL for anonymous views. Rows are never updated or
    deleted; they feed the per-item view count.
    """

    viewer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="history",
    )
    item = models.ForeignKey(
        Item,
        on_delete=models.PROTECT,
        related_name="history",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "history"
        ordering = ["-created_at"]
        verbose_name_plural = "history"
        indexes = [
            models.Index(fields=["item", "viewer"], name="idx_history_item_viewer"),
        ]

    def __str__(self):
        viewer = self.viewer_id if self.viewer_id is not None else "anonymous"
        return f"History {self.id} | item={self.item_id} | viewer={viewer}"
