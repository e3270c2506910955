"""
Data access for users, items, categories and view history.

Every repository method can run in two forms:

* ambient: called without ``tx``, the statement runs in its own implicit
  transaction (Django autocommit);
* transaction-scoped: called with the ``StoreTransaction`` yielded by
  ``Store.transaction()``, the statement joins that transaction and reads
  lock the rows they return (``SELECT ... FOR UPDATE`` on backends that
  support it).

A ``Store`` is built explicitly and handed to each service; nothing here
holds module-level state.
"""

from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Dict, Iterable, List, Optional, Tuple

from django.db import DEFAULT_DB_ALIAS, transaction
from django.db.models import Count, F, Q
from django.db.transaction import TransactionManagementError
from django.utils import timezone

from marketplace.models import Category, History, Item, User


@dataclass(frozen=True)
class ItemFilter:
    """Conjunctive filter for item searches. ``None`` means "no constraint"."""

    name: str = ""
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    category_id: Optional[int] = None
    statuses: Optional[Tuple[int, ...]] = (Item.Status.ON_SALE,)


@dataclass(frozen=True)
class ItemPatch:
    """
    Partial update of an item. Fields left as ``None`` are not written.

    ``changes()`` yields the present fields in declaration order, so the same
    patch always produces the same UPDATE statement.
    """

    name: Optional[str] = None
    price: Optional[int] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    image: Optional[bytes] = None

    def changes(self) -> Dict[str, object]:
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.changes()


class StoreTransaction:
    """Handle for an open store transaction. Only valid inside its ``with`` block."""

    def __init__(self, using: str):
        self.using = using
        self.closed = False

    def ensure_active(self):
        if self.closed or not transaction.get_connection(self.using).in_atomic_block:
            raise TransactionManagementError(
                "Store transaction is not active on database '%s'." % self.using
            )


class Repository:
    model = None

    def __init__(self, using: str):
        self.using = using

    def queryset(self, tx: StoreTransaction = None, lock: bool = True):
        queryset = self.model.objects.using(self.using)
        if tx is not None:
            tx.ensure_active()
            if lock:
                queryset = queryset.select_for_update()
        return queryset


class UserRepository(Repository):
    model = User

    def add(self, name: str, password_hash: str) -> User:
        return self.queryset().create(name=name, password=password_hash)

    def get(self, user_id: int, tx: StoreTransaction = None) -> User:
        return self.queryset(tx).get(pk=user_id)

    def exists(self, user_id: int) -> bool:
        return self.queryset().filter(pk=user_id).exists()

    def get_many(
        self, user_ids: Iterable[int], tx: StoreTransaction = None
    ) -> Dict[int, User]:
        """Fetch users by id, locking them in primary key order within ``tx``."""
        users = self.queryset(tx).filter(pk__in=set(user_ids)).order_by("pk")
        return {user.pk: user for user in users}

    def add_balance(self, user_id: int, amount: int, tx: StoreTransaction = None) -> int:
        return self.queryset(tx, lock=False).filter(pk=user_id).update(
            balance=F("balance") + amount, updated_at=timezone.now()
        )

    def subtract_balance(
        self, user_id: int, amount: int, tx: StoreTransaction = None
    ) -> int:
        """Debit only if the balance covers ``amount``. Returns the number of rows hit."""
        return (
            self.queryset(tx, lock=False)
            .filter(pk=user_id, balance__gte=amount)
            .update(balance=F("balance") - amount, updated_at=timezone.now())
        )


class CategoryRepository(Repository):
    model = Category

    def get(self, category_id: int) -> Category:
        return self.queryset().get(pk=category_id)

    def exists(self, category_id: int) -> bool:
        return self.queryset().filter(pk=category_id).exists()

    def all(self) -> List[Category]:
        return list(self.queryset().order_by("id"))


class ItemRepository(Repository):
    model = Item

    def add(
        self,
        seller_id: int,
        name: str,
        price: int,
        description: str,
        category_id: int,
        image: bytes,
        status: int = Item.Status.INITIAL,
    ) -> Item:
        return self.queryset().create(
            seller_id=seller_id,
            name=name,
            price=price,
            description=description,
            category_id=category_id,
            image=image,
            status=status,
        )

    def get(self, item_id: int, tx: StoreTransaction = None) -> Item:
        return self.queryset(tx).defer("image").get(pk=item_id)

    def image(self, item_id: int) -> bytes:
        data = self.queryset().values_list("image", flat=True).get(pk=item_id)
        return bytes(data) if data is not None else b""

    def filter(self, item_filter: ItemFilter) -> List[Item]:
        """Items matching every constraint of ``item_filter``, most recently updated first."""
        queryset = self.queryset().select_related("category").defer("image")

        if item_filter.name:
            queryset = queryset.filter(name__contains=item_filter.name)
        if item_filter.price_min is not None:
            queryset = queryset.filter(price__gte=item_filter.price_min)
        if item_filter.price_max is not None:
            queryset = queryset.filter(price__lte=item_filter.price_max)
        if item_filter.category_id is not None:
            queryset = queryset.filter(category_id=item_filter.category_id)
        if item_filter.statuses is not None:
            queryset = queryset.filter(status__in=item_filter.statuses)

        return list(queryset.order_by("-updated_at", "-id"))

    def of_seller(self, seller_id: int) -> List[Item]:
        return list(
            self.queryset()
            .select_related("category")
            .defer("image")
            .filter(seller_id=seller_id)
            .order_by("id")
        )

    def set_status(
        self,
        item_id: int,
        status: int,
        expected: int = None,
        tx: StoreTransaction = None,
    ) -> int:
        """
        Move an item to ``status``.

        With ``expected`` the write only applies while the row still holds that
        status, which turns a stale read into zero affected rows instead of a
        lost update.
        """
        queryset = self.queryset(tx, lock=False).filter(pk=item_id)
        if expected is not None:
            queryset = queryset.filter(status=expected)
        return queryset.update(status=status, updated_at=timezone.now())

    def update(self, item_id: int, patch: ItemPatch, tx: StoreTransaction = None) -> int:
        changes = patch.changes()
        if not changes:
            return 0
        return self.queryset(tx, lock=False).filter(pk=item_id).update(
            updated_at=timezone.now(), **changes
        )


class HistoryRepository(Repository):
    model = History

    def add(self, item_id: int, viewer_id: Optional[int] = None) -> History:
        return self.queryset().create(item_id=item_id, viewer_id=viewer_id)

    def view_count(self, item_id: int) -> int:
        """
        Distinct registered viewers plus every anonymous view.

        Views by the item's own seller are not counted.
        """
        counts = (
            self.queryset()
            .filter(item_id=item_id)
            .exclude(viewer_id=F("item__seller_id"))
            .aggregate(
                registered=Count("viewer", distinct=True),
                anonymous=Count("pk", filter=Q(viewer__isnull=True)),
            )
        )
        return counts["registered"] + counts["anonymous"]


class Store:
    """Entry point to the repositories of one database alias."""

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using
        self.users = UserRepository(using)
        self.items = ItemRepository(using)
        self.categories = CategoryRepository(using)
        self.history = HistoryRepository(using)

    @contextmanager
    def transaction(self):
        """
        Open a transaction and yield its handle.

        Leaving the block normally commits; any exception rolls back every
        write made through the handle and is re-raised.
        """
        with transaction.atomic(using=self.using):
            tx = StoreTransaction(self.using)
            try:
                yield tx
            finally:
                tx.closed = True
