import logging
from dataclasses import dataclass
from typing import List, Optional

from marketplace.exceptions import InvalidInput, NotFound, PreconditionFailed
from marketplace.models import Category, Item
from marketplace.store import ItemFilter, ItemPatch, Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemDetail:
    item: Item
    category_name: str
    views: int


class ItemService:
    """
    Item listing, lifecycle and browsing.

    Status transitions handled here: INITIAL -> ON_SALE when the seller lists
    the item. The move to SOLD_OUT belongs to the purchase flow. Every write
    here is a single statement and needs no explicit transaction.
    """

    def __init__(self, store: Store):
        self.store = store

    def add(
        self,
        seller_id: int,
        name: str,
        price: int,
        category_id: int,
        description: str = "",
        image: bytes = b"",
    ) -> Item:
        """
        Create an item in INITIAL status.

        Raises:
            InvalidInput: If price is not positive or the category doesn't exist.
            PreconditionFailed: If the seller doesn't exist.
        """
        if price <= 0:
            raise InvalidInput("Price must be greater than 0.")

        if not self.store.users.exists(seller_id):
            raise PreconditionFailed("User does not exist.")

        if not self.store.categories.exists(category_id):
            raise InvalidInput("Invalid category id.")

        item = self.store.items.add(
            seller_id=seller_id,
            name=name,
            price=price,
            description=description,
            category_id=category_id,
            image=image,
        )
        logger.info(
            "Item added: item=%d seller=%d price=%d category=%d",
            item.pk,
            seller_id,
            price,
            category_id,
        )
        return item

    def list_for_sale(
        self, seller_id: int, item_id: int, claimed_seller_id: Optional[int] = None
    ) -> Item:
        """
        Put an INITIAL item on sale.

        ``claimed_seller_id`` is the seller id a client may send alongside the
        item id; when present it must match the real seller as well.

        Raises:
            NotFound: If the item doesn't exist.
            PreconditionFailed: If the caller is not the seller or the item
                is not in INITIAL status.
        """
        try:
            item = self.store.items.get(item_id)
        except Item.DoesNotExist:
            raise NotFound("Item does not exist.")

        if seller_id != item.seller_id or (
            claimed_seller_id and claimed_seller_id != item.seller_id
        ):
            raise PreconditionFailed("You can only sell your own items.")

        if item.status != Item.Status.INITIAL:
            raise PreconditionFailed("Item status is not initial.")

        updated = self.store.items.set_status(
            item.pk, Item.Status.ON_SALE, expected=Item.Status.INITIAL
        )
        if updated != 1:
            raise PreconditionFailed("Item status is not initial.")

        item.status = Item.Status.ON_SALE
        logger.info("Item listed for sale: item=%d seller=%d", item.pk, seller_id)
        return item

    def edit(self, item_id: int, seller_id: int, patch: ItemPatch) -> int:
        """
        Apply ``patch`` to an item owned by ``seller_id``.

        Only fields present in the patch are written. Status is never touched
        and items in any status can be edited.

        Raises:
            NotFound: If the item doesn't exist.
            PreconditionFailed: If the caller is not the seller.
            InvalidInput: If the price is not positive or the category
                doesn't exist.
        """
        if patch.price is not None and patch.price <= 0:
            raise InvalidInput("Price must be greater than 0.")

        try:
            item = self.store.items.get(item_id)
        except Item.DoesNotExist:
            raise NotFound("Item does not exist.")

        if item.seller_id != seller_id:
            raise PreconditionFailed("Cannot edit other user's item.")

        if patch.category_id is not None and not self.store.categories.exists(
            patch.category_id
        ):
            raise InvalidInput("Invalid category id.")

        self.store.items.update(item.pk, patch)
        logger.info(
            "Item edited: item=%d seller=%d fields=%s",
            item.pk,
            seller_id,
            ",".join(patch.changes()),
        )
        return item.pk

    def detail(self, item_id: int, viewer_id: Optional[int] = None) -> ItemDetail:
        """
        Return an item with its category name and view count, then record the view.

        The count reflects views before this one. ``viewer_id`` of None is an
        anonymous view.
        """
        try:
            item = self.store.items.get(item_id)
        except Item.DoesNotExist:
            raise NotFound("Item does not exist.")

        try:
            category = self.store.categories.get(item.category_id)
        except Category.DoesNotExist:
            raise NotFound("Category does not exist.")

        views = self.store.history.view_count(item.pk)
        self.store.history.add(item.pk, viewer_id=viewer_id)

        return ItemDetail(item=item, category_name=category.name, views=views)

    def image(self, item_id: int) -> bytes:
        try:
            return self.store.items.image(item_id)
        except Item.DoesNotExist:
            raise NotFound("Item does not exist.")

    def browse(self) -> List[Item]:
        return self.store.items.filter(ItemFilter())

    def search_by_name(self, name: str) -> List[Item]:
        return self.store.items.filter(ItemFilter(name=name, statuses=None))

    def search(self, item_filter: ItemFilter) -> List[Item]:
        if (
            item_filter.price_min is not None
            and item_filter.price_max is not None
            and item_filter.price_min > item_filter.price_max
        ):
            raise InvalidInput("price-min must not exceed price-max.")
        return self.store.items.filter(item_filter)

    def items_of_seller(self, seller_id: int) -> List[Item]:
        return self.store.items.of_seller(seller_id)

    def categories(self) -> List[Category]:
        return self.store.categories.all()
