from marketplace.services.account import AccountService, LoginResult
from marketplace.services.item import ItemDetail, ItemService
from marketplace.services.ledger import BalanceLedger
from marketplace.services.purchase import PurchaseCoordinator, PurchaseReceipt

__all__ = [
    "AccountService",
    "LoginResult",
    "ItemDetail",
    "ItemService",
    "BalanceLedger",
    "PurchaseCoordinator",
    "PurchaseReceipt",
]
