import logging

from marketplace.exceptions import InvalidInput, PreconditionFailed
from marketplace.models import User
from marketplace.store import Store, StoreTransaction

logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    Credit and debit operations on user balances.

    ``recharge`` is the only standalone write. ``debit`` and ``credit`` require
    an open store transaction and are meant to be composed by callers that
    move funds between users, such as the purchase flow.
    """

    def __init__(self, store: Store):
        self.store = store

    def balance(self, user_id: int) -> int:
        try:
            return self.store.users.get(user_id).balance
        except User.DoesNotExist:
            raise PreconditionFailed("User does not exist.")

    def recharge(self, user_id: int, amount: int) -> int:
        """
        Add ``amount`` to the user's balance.

        Args:
            user_id: The user being recharged.
            amount: Positive integer amount to add.

        Returns:
            The balance after the recharge.

        Raises:
            InvalidInput: If amount is not positive.
            PreconditionFailed: If the user doesn't exist.
        """
        if amount <= 0:
            raise InvalidInput("Recharge amount must be greater than 0.")

        with self.store.transaction() as tx:
            try:
                user = self.store.users.get(user_id, tx=tx)
            except User.DoesNotExist:
                raise PreconditionFailed("User does not exist.")

            self.credit(tx, user_id, amount)
            new_balance = user.balance + amount

        logger.info(
            "Recharge completed: user=%d amount=%d new_balance=%d",
            user_id,
            amount,
            new_balance,
        )
        return new_balance

    def debit(self, tx: StoreTransaction, user_id: int, amount: int):
        if amount <= 0:
            raise InvalidInput("Debit amount must be greater than 0.")

        if self.store.users.subtract_balance(user_id, amount, tx=tx) != 1:
            raise InvalidInput("Your balance is not enough.")

    def credit(self, tx: StoreTransaction, user_id: int, amount: int):
        if amount <= 0:
            raise InvalidInput("Credit amount must be greater than 0.")

        if self.store.users.add_balance(user_id, amount, tx=tx) != 1:
            raise PreconditionFailed("User does not exist.")
