import logging
from dataclasses import dataclass

from django.db import DatabaseError

from marketplace.exceptions import Internal, NotFound, PreconditionFailed, InvalidInput
from marketplace.models import Item
from marketplace.services.ledger import BalanceLedger
from marketplace.store import Store, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseReceipt:
    item_id: int
    buyer_id: int
    seller_id: int
    price: int
    buyer_balance: int


class PurchaseCoordinator:
    """
    Executes "buyer purchases item" as one atomic unit.

    All reads and writes run inside a single store transaction. The item row
    is locked by the status-checking read, so a concurrent purchase of the
    same item waits and then sees SOLD_OUT. On backends without row locks
    the status write is conditional on the item still being ON_SALE and the
    debit on the balance still covering the price; either one failing aborts
    the transaction. No in-process locks and no retries.
    """

    def __init__(self, store: Store, ledger: BalanceLedger = None):
        self.store = store
        self.ledger = ledger or BalanceLedger(store)

    def purchase(self, buyer_id: int, item_id: int) -> PurchaseReceipt:
        """
        Buy ``item_id`` for ``buyer_id``.

        Raises:
            NotFound: If the item doesn't exist.
            PreconditionFailed: If the item is not on sale, belongs to the
                buyer, or the buyer or seller row is missing.
            InvalidInput: If the buyer's balance doesn't cover the price.
            Internal: If the store fails mid-transaction.
        """
        try:
            with self.store.transaction() as tx:
                receipt = self._purchase(tx, buyer_id, item_id)
        except DatabaseError as exc:
            logger.exception(
                "Purchase rolled back (store error): buyer=%d item=%d",
                buyer_id,
                item_id,
            )
            raise Internal("Purchase could not be completed.") from exc
        except (NotFound, PreconditionFailed, InvalidInput) as exc:
            logger.warning(
                "Purchase rejected: buyer=%d item=%d reason=%s",
                buyer_id,
                item_id,
                exc.message,
            )
            raise

        logger.info(
            "Purchase completed: buyer=%d seller=%d item=%d price=%d buyer_balance=%d",
            receipt.buyer_id,
            receipt.seller_id,
            receipt.item_id,
            receipt.price,
            receipt.buyer_balance,
        )
        return receipt

    def _purchase(self, tx: StoreTransaction, buyer_id: int, item_id: int) -> PurchaseReceipt:
        try:
            item = self.store.items.get(item_id, tx=tx)
        except Item.DoesNotExist:
            raise NotFound("Item does not exist.")

        if item.status != Item.Status.ON_SALE:
            raise PreconditionFailed("This item is not on sale.")

        if item.seller_id == buyer_id:
            raise PreconditionFailed("Cannot buy your own item.")

        # Lock both users in primary key order to avoid deadlocks between
        # purchases that cross buyer and seller.
        users = self.store.users.get_many([buyer_id, item.seller_id], tx=tx)

        buyer = users.get(buyer_id)
        if buyer is None:
            raise PreconditionFailed("Buyer does not exist.")

        if buyer.balance < item.price:
            raise InvalidInput("Your balance is not enough.")

        if item.seller_id not in users:
            raise PreconditionFailed("Seller does not exist.")

        updated = self.store.items.set_status(
            item.pk, Item.Status.SOLD_OUT, expected=Item.Status.ON_SALE, tx=tx
        )
        if updated != 1:
            raise PreconditionFailed("This item is not on sale.")

        self.ledger.debit(tx, buyer_id, item.price)
        self.ledger.credit(tx, item.seller_id, item.price)

        return PurchaseReceipt(
            item_id=item.pk,
            buyer_id=buyer_id,
            seller_id=item.seller_id,
            price=item.price,
            buyer_balance=buyer.balance - item.price,
        )
