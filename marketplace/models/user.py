from django.db import models

from marketplace.models.base import BaseModel


class User(BaseModel):
    """
    A marketplace member who can both sell and buy items.

    Balance is stored in the smallest currency unit. Concurrency safety is
    handled at the service layer via select_for_update() and F() expressions;
    the check constraint is the last line against a negative balance.
    """

    name = models.CharField(max_length=255)
    password = models.CharField(max_length=255)
    balance = models.BigIntegerField(default=0)

    class Meta(BaseModel.Meta):
        db_table = "users"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(balance__gte=0), name="users_balance_non_negative"
            ),
        ]

    def __str__(self):
        return f"User {self.id} {self.name} (balance={self.balance})"
