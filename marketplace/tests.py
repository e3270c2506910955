import threading
from datetime import timedelta
from io import StringIO
from unittest import skipUnless
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.db.transaction import TransactionManagementError
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from jose import JWTError
from rest_framework.test import APIClient

from marketplace.authentication import decode_token, issue_token
from marketplace.exceptions import (
    Internal,
    InvalidInput,
    MarketplaceError,
    NotFound,
    PreconditionFailed,
    Unauthorized,
)
from marketplace.models import Category, History, Item, User
from marketplace.services import (
    AccountService,
    BalanceLedger,
    ItemService,
    PurchaseCoordinator,
)
from marketplace.store import ItemFilter, ItemPatch, Store

FAST_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]


def make_user(name="alice", balance=0):
    return User.objects.create(name=name, password="!", balance=balance)


def make_item(seller, category, price=500, status=Item.Status.ON_SALE, name="jacket"):
    return Item.objects.create(
        seller=seller,
        category=category,
        name=name,
        price=price,
        description="warm",
        image=b"\xff\xd8jpeg",
        status=status,
    )


def snapshot(item, *users):
    item.refresh_from_db()
    for user in users:
        user.refresh_from_db()
    return (item.status,) + tuple(user.balance for user in users)


# ============================================================
# Model Tests
# ============================================================


class UserModelTest(TestCase):
    def test_create_user(self):
        user = make_user()
        self.assertEqual(user.balance, 0)
        self.assertIsNotNone(user.created_at)

    def test_user_str(self):
        user = make_user(name="bob", balance=30)
        self.assertIn("bob", str(user))
        self.assertIn("30", str(user))

    def test_negative_balance_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_user(balance=-1)


class ItemModelTest(TestCase):
    def setUp(self):
        self.seller = make_user()
        self.category = Category.objects.create(name="fashion")

    def test_new_item_is_initial(self):
        item = Item.objects.create(
            seller=self.seller, category=self.category, name="cap", price=100
        )
        self.assertEqual(item.status, Item.Status.INITIAL)

    def test_non_positive_price_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_item(self.seller, self.category, price=0)

    def test_item_str(self):
        item = make_item(self.seller, self.category)
        self.assertIn("jacket", str(item))
        self.assertIn("On sale", str(item))

    def test_history_str_anonymous(self):
        item = make_item(self.seller, self.category)
        entry = History.objects.create(item=item)
        self.assertIn("anonymous", str(entry))


# ============================================================
# Store Tests
# ============================================================


class StoreTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.seller = make_user(name="seller")
        self.fashion = Category.objects.create(name="fashion")
        self.books = Category.objects.create(name="books")

    def test_transaction_handle_rejected_after_block(self):
        with self.store.transaction() as tx:
            self.store.users.get(self.seller.pk, tx=tx)

        with self.assertRaises(TransactionManagementError):
            self.store.users.get(self.seller.pk, tx=tx)

    def test_transaction_rolls_back_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as tx:
                self.store.users.add_balance(self.seller.pk, 100, tx=tx)
                raise RuntimeError("abort")

        self.seller.refresh_from_db()
        self.assertEqual(self.seller.balance, 0)

    def test_subtract_balance_refuses_overdraft(self):
        User.objects.filter(pk=self.seller.pk).update(balance=50)

        self.assertEqual(self.store.users.subtract_balance(self.seller.pk, 80), 0)
        self.assertEqual(self.store.users.subtract_balance(self.seller.pk, 50), 1)

        self.seller.refresh_from_db()
        self.assertEqual(self.seller.balance, 0)

    def test_get_many_skips_missing_users(self):
        users = self.store.users.get_many([self.seller.pk, 999999])
        self.assertEqual(list(users), [self.seller.pk])

    def test_filter_composes_constraints(self):
        match = make_item(self.seller, self.fashion, price=300, name="red jacket")
        make_item(self.seller, self.fashion, price=900, name="blue jacket")
        make_item(self.seller, self.books, price=300, name="jacket book")
        make_item(
            self.seller, self.fashion, price=300, name="old jacket",
            status=Item.Status.SOLD_OUT,
        )

        items = self.store.items.filter(
            ItemFilter(name="jacket", price_min=100, price_max=500, category_id=self.fashion.pk)
        )
        self.assertEqual([item.pk for item in items], [match.pk])

    def test_filter_without_status_constraint(self):
        make_item(self.seller, self.fashion, status=Item.Status.INITIAL)
        make_item(self.seller, self.fashion, status=Item.Status.SOLD_OUT)

        self.assertEqual(len(self.store.items.filter(ItemFilter(statuses=None))), 2)
        self.assertEqual(len(self.store.items.filter(ItemFilter())), 0)

    def test_filter_orders_by_most_recently_updated(self):
        older = make_item(self.seller, self.fashion, name="older")
        newer = make_item(self.seller, self.fashion, name="newer")
        Item.objects.filter(pk=older.pk).update(
            updated_at=timezone.now() + timedelta(minutes=1)
        )

        items = self.store.items.filter(ItemFilter())
        self.assertEqual([item.pk for item in items], [older.pk, newer.pk])

    def test_set_status_with_expected_status(self):
        item = make_item(self.seller, self.fashion, status=Item.Status.SOLD_OUT)

        updated = self.store.items.set_status(
            item.pk, Item.Status.SOLD_OUT, expected=Item.Status.ON_SALE
        )
        self.assertEqual(updated, 0)

    def test_update_writes_only_present_fields(self):
        item = make_item(self.seller, self.fashion, price=500, name="jacket")

        self.store.items.update(item.pk, ItemPatch(price=700))

        item.refresh_from_db()
        self.assertEqual(item.price, 700)
        self.assertEqual(item.name, "jacket")
        self.assertEqual(item.description, "warm")
        self.assertEqual(bytes(item.image), b"\xff\xd8jpeg")

    def test_empty_patch_writes_nothing(self):
        item = make_item(self.seller, self.fashion)
        self.assertTrue(ItemPatch().is_empty())
        self.assertEqual(self.store.items.update(item.pk, ItemPatch()), 0)

    def test_patch_changes_follow_field_order(self):
        patch = ItemPatch(category_id=2, name="cap", price=10)
        self.assertEqual(list(patch.changes()), ["name", "price", "category_id"])

    def test_image_round_trip(self):
        item = make_item(self.seller, self.fashion)
        self.assertEqual(self.store.items.image(item.pk), b"\xff\xd8jpeg")

    def test_view_count(self):
        item = make_item(self.seller, self.fashion)
        viewer = make_user(name="viewer")

        self.store.history.add(item.pk, viewer_id=viewer.pk)
        self.store.history.add(item.pk, viewer_id=viewer.pk)
        self.store.history.add(item.pk)
        self.store.history.add(item.pk)
        self.store.history.add(item.pk, viewer_id=self.seller.pk)

        # one distinct registered viewer + two anonymous views, seller excluded
        self.assertEqual(self.store.history.view_count(item.pk), 3)


# ============================================================
# Ledger Tests
# ============================================================


class BalanceLedgerTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.ledger = BalanceLedger(self.store)
        self.user = make_user(balance=100)

    def test_recharge_success(self):
        new_balance = self.ledger.recharge(self.user.pk, 250)

        self.assertEqual(new_balance, 350)
        self.user.refresh_from_db()
        self.assertEqual(self.user.balance, 350)

    def test_recharge_zero_amount_raises(self):
        with self.assertRaises(InvalidInput):
            self.ledger.recharge(self.user.pk, 0)

    def test_recharge_negative_amount_raises(self):
        with self.assertRaises(InvalidInput):
            self.ledger.recharge(self.user.pk, -10)

        self.user.refresh_from_db()
        self.assertEqual(self.user.balance, 100)

    def test_recharge_nonexistent_user_raises(self):
        with self.assertRaises(PreconditionFailed):
            self.ledger.recharge(999999, 10)

    def test_balance(self):
        self.assertEqual(self.ledger.balance(self.user.pk), 100)

    def test_balance_nonexistent_user_raises(self):
        with self.assertRaises(PreconditionFailed):
            self.ledger.balance(999999)

    def test_debit_refuses_overdraft(self):
        with self.assertRaises(InvalidInput):
            with self.store.transaction() as tx:
                self.ledger.debit(tx, self.user.pk, 101)

        self.user.refresh_from_db()
        self.assertEqual(self.user.balance, 100)

    def test_debit_and_credit_require_positive_amounts(self):
        with self.store.transaction() as tx:
            with self.assertRaises(InvalidInput):
                self.ledger.debit(tx, self.user.pk, 0)
            with self.assertRaises(InvalidInput):
                self.ledger.credit(tx, self.user.pk, -5)

    def test_debit_outside_transaction_raises(self):
        with self.store.transaction() as tx:
            pass

        with self.assertRaises(TransactionManagementError):
            self.ledger.debit(tx, self.user.pk, 10)


# ============================================================
# Purchase Coordinator Tests
# ============================================================


class PurchaseCoordinatorTest(TestCase):
    def setUp(self):
        self.store = Store()
        self.coordinator = PurchaseCoordinator(self.store)
        self.category = Category.objects.create(name="fashion")
        self.seller = make_user(name="seller", balance=200)
        self.buyer = make_user(name="buyer", balance=1000)
        self.item = make_item(self.seller, self.category, price=500)

    def test_purchase_success(self):
        receipt = self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(receipt.buyer_balance, 500)
        self.assertEqual(receipt.price, 500)
        self.assertEqual(receipt.seller_id, self.seller.pk)
        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.SOLD_OUT, 500, 700),
        )

    def test_purchase_conserves_funds(self):
        before = self.buyer.balance + self.seller.balance

        self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.buyer.refresh_from_db()
        self.seller.refresh_from_db()
        self.assertEqual(self.buyer.balance + self.seller.balance, before)
        self.assertEqual(self.buyer.balance, 1000 - self.item.price)

    def test_purchase_exact_balance(self):
        User.objects.filter(pk=self.buyer.pk).update(balance=500)

        self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.SOLD_OUT, 0, 700),
        )

    def test_purchase_nonexistent_item_raises(self):
        with self.assertRaises(NotFound):
            self.coordinator.purchase(self.buyer.pk, 999999)

    def test_purchase_insufficient_balance(self):
        User.objects.filter(pk=self.buyer.pk).update(balance=100)
        before = snapshot(self.item, self.buyer, self.seller)

        with self.assertRaises(InvalidInput) as ctx:
            self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertIn("balance", ctx.exception.message)
        self.assertEqual(snapshot(self.item, self.buyer, self.seller), before)

    def test_purchase_sold_out_item(self):
        Item.objects.filter(pk=self.item.pk).update(status=Item.Status.SOLD_OUT)
        before = snapshot(self.item, self.buyer, self.seller)

        with self.assertRaises(PreconditionFailed):
            self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(snapshot(self.item, self.buyer, self.seller), before)

    def test_purchase_initial_item(self):
        Item.objects.filter(pk=self.item.pk).update(status=Item.Status.INITIAL)

        with self.assertRaises(PreconditionFailed):
            self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, Item.Status.INITIAL)

    def test_purchase_twice_fails_second_time(self):
        other = make_user(name="other", balance=1000)
        self.coordinator.purchase(self.buyer.pk, self.item.pk)

        with self.assertRaises(PreconditionFailed):
            self.coordinator.purchase(other.pk, self.item.pk)

        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller, other),
            (Item.Status.SOLD_OUT, 500, 700, 1000),
        )

    def test_purchase_own_item_rejected(self):
        User.objects.filter(pk=self.seller.pk).update(balance=10000)
        before = snapshot(self.item, self.seller)

        with self.assertRaises(PreconditionFailed) as ctx:
            self.coordinator.purchase(self.seller.pk, self.item.pk)

        self.assertIn("own item", ctx.exception.message)
        self.assertEqual(snapshot(self.item, self.seller), before)

    def test_purchase_own_sold_out_item_still_precondition_failed(self):
        Item.objects.filter(pk=self.item.pk).update(status=Item.Status.SOLD_OUT)

        with self.assertRaises(PreconditionFailed):
            self.coordinator.purchase(self.seller.pk, self.item.pk)

    def test_purchase_nonexistent_buyer(self):
        with self.assertRaises(PreconditionFailed):
            self.coordinator.purchase(999999, self.item.pk)

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, Item.Status.ON_SALE)

    def test_purchase_missing_seller_row(self):
        stale_users = {self.buyer.pk: self.buyer}
        before = snapshot(self.item, self.buyer, self.seller)

        with patch.object(self.store.users, "get_many", return_value=stale_users):
            with self.assertRaises(PreconditionFailed):
                self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(snapshot(self.item, self.buyer, self.seller), before)

    def test_status_changed_after_read_aborts(self):
        # The item was read as ON_SALE but another purchase sold it before
        # the status write.
        stale_item = Item.objects.get(pk=self.item.pk)
        Item.objects.filter(pk=self.item.pk).update(status=Item.Status.SOLD_OUT)

        with patch.object(self.store.items, "get", return_value=stale_item):
            with self.assertRaises(PreconditionFailed):
                self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.SOLD_OUT, 1000, 200),
        )

    def test_balance_changed_after_read_rolls_back_status(self):
        stale_buyer = User.objects.get(pk=self.buyer.pk)
        User.objects.filter(pk=self.buyer.pk).update(balance=100)
        stale_users = {self.buyer.pk: stale_buyer, self.seller.pk: self.seller}

        with patch.object(self.store.users, "get_many", return_value=stale_users):
            with self.assertRaises(InvalidInput):
                self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.ON_SALE, 100, 200),
        )

    def test_store_error_mid_transaction_rolls_back(self):
        with patch.object(
            self.store.users, "add_balance", side_effect=DatabaseError("connection lost")
        ):
            with self.assertRaises(Internal):
                self.coordinator.purchase(self.buyer.pk, self.item.pk)

        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.ON_SALE, 1000, 200),
        )


class ConcurrentPurchaseTest(TransactionTestCase):
    """Real concurrent purchases from separate threads and connections."""

    def setUp(self):
        category = Category.objects.create(name="fashion")
        self.seller = make_user(name="seller", balance=0)
        self.buyers = [
            make_user(name="buyer-a", balance=1000),
            make_user(name="buyer-b", balance=1000),
        ]
        self.item = make_item(self.seller, category, price=500)

    @skipUnless(connection.vendor == "sqlite", "SQLite only")
    def test_sqlite_writers_lock_at_begin(self):
        self.assertEqual(
            connection.settings_dict["OPTIONS"].get("transaction_mode"), "IMMEDIATE"
        )
        self.assertNotEqual(connection.settings_dict["NAME"], ":memory:")

    def test_no_double_sell(self):
        barrier = threading.Barrier(len(self.buyers))
        outcomes = []
        lock = threading.Lock()

        def attempt(buyer_id):
            barrier.wait()
            try:
                PurchaseCoordinator(Store()).purchase(buyer_id, self.item.pk)
                result = "ok"
            except MarketplaceError as exc:
                result = type(exc).__name__
            finally:
                connection.close()
            with lock:
                outcomes.append(result)

        threads = [
            threading.Thread(target=attempt, args=(buyer.pk,)) for buyer in self.buyers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ["PreconditionFailed", "ok"])

        self.item.refresh_from_db()
        self.seller.refresh_from_db()
        self.assertEqual(self.item.status, Item.Status.SOLD_OUT)
        self.assertEqual(self.seller.balance, 500)

        balances = sorted(User.objects.get(pk=b.pk).balance for b in self.buyers)
        self.assertEqual(balances, [500, 1000])


# ============================================================
# Item Service Tests
# ============================================================


class ItemServiceTest(TestCase):
    def setUp(self):
        self.service = ItemService(Store())
        self.category = Category.objects.create(name="fashion")
        self.seller = make_user(name="seller")
        self.other = make_user(name="other")

    def test_add_item(self):
        item = self.service.add(
            seller_id=self.seller.pk,
            name="cap",
            price=100,
            category_id=self.category.pk,
            image=b"img",
        )

        item.refresh_from_db()
        self.assertEqual(item.status, Item.Status.INITIAL)
        self.assertEqual(item.seller_id, self.seller.pk)

    def test_add_item_non_positive_price_raises(self):
        with self.assertRaises(InvalidInput):
            self.service.add(self.seller.pk, "cap", 0, self.category.pk)

    def test_add_item_missing_seller_raises(self):
        with self.assertRaises(PreconditionFailed):
            self.service.add(999999, "cap", 100, self.category.pk)
        self.assertFalse(Item.objects.exists())

    def test_add_item_unknown_category_raises(self):
        with self.assertRaises(InvalidInput):
            self.service.add(self.seller.pk, "cap", 100, 999999)
        self.assertFalse(Item.objects.exists())

    def test_list_for_sale(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)

        listed = self.service.list_for_sale(self.seller.pk, item.pk)

        self.assertEqual(listed.status, Item.Status.ON_SALE)
        item.refresh_from_db()
        self.assertEqual(item.status, Item.Status.ON_SALE)

    def test_list_for_sale_missing_item_raises(self):
        with self.assertRaises(NotFound):
            self.service.list_for_sale(self.seller.pk, 999999)

    def test_list_for_sale_by_other_user_raises(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)

        with self.assertRaises(PreconditionFailed):
            self.service.list_for_sale(self.other.pk, item.pk)

        item.refresh_from_db()
        self.assertEqual(item.status, Item.Status.INITIAL)

    def test_list_for_sale_with_mismatched_claimed_seller_raises(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)

        with self.assertRaises(PreconditionFailed):
            self.service.list_for_sale(
                self.seller.pk, item.pk, claimed_seller_id=self.other.pk
            )

    def test_status_never_moves_backward(self):
        for current in (Item.Status.ON_SALE, Item.Status.SOLD_OUT):
            item = make_item(self.seller, self.category, status=current)

            with self.assertRaises(PreconditionFailed):
                self.service.list_for_sale(self.seller.pk, item.pk)

            item.refresh_from_db()
            self.assertEqual(item.status, current)

    def test_edit_partial_fields(self):
        item = make_item(self.seller, self.category, price=500, name="jacket")
        books = Category.objects.create(name="books")

        self.service.edit(
            item.pk, self.seller.pk, ItemPatch(description="brand new", category_id=books.pk)
        )

        item.refresh_from_db()
        self.assertEqual(item.description, "brand new")
        self.assertEqual(item.category_id, books.pk)
        self.assertEqual(item.name, "jacket")
        self.assertEqual(item.price, 500)
        self.assertEqual(item.status, Item.Status.ON_SALE)

    def test_edit_sold_out_item_allowed(self):
        item = make_item(self.seller, self.category, status=Item.Status.SOLD_OUT)

        self.service.edit(item.pk, self.seller.pk, ItemPatch(name="renamed"))

        item.refresh_from_db()
        self.assertEqual(item.name, "renamed")
        self.assertEqual(item.status, Item.Status.SOLD_OUT)

    def test_edit_other_users_item_raises(self):
        item = make_item(self.seller, self.category)

        with self.assertRaises(PreconditionFailed):
            self.service.edit(item.pk, self.other.pk, ItemPatch(name="mine"))

        item.refresh_from_db()
        self.assertEqual(item.name, "jacket")

    def test_edit_unknown_category_raises(self):
        item = make_item(self.seller, self.category)

        with self.assertRaises(InvalidInput):
            self.service.edit(item.pk, self.seller.pk, ItemPatch(category_id=999999))

    def test_edit_negative_price_raises(self):
        item = make_item(self.seller, self.category)

        with self.assertRaises(InvalidInput):
            self.service.edit(item.pk, self.seller.pk, ItemPatch(price=-1))

    def test_edit_missing_item_raises(self):
        with self.assertRaises(NotFound):
            self.service.edit(999999, self.seller.pk, ItemPatch(name="x"))

    def test_detail_counts_previous_views_and_records_view(self):
        item = make_item(self.seller, self.category)

        first = self.service.detail(item.pk)
        second = self.service.detail(item.pk, viewer_id=self.other.pk)
        third = self.service.detail(item.pk, viewer_id=self.other.pk)

        self.assertEqual(first.category_name, "fashion")
        self.assertEqual((first.views, second.views, third.views), (0, 1, 2))
        self.assertEqual(History.objects.filter(item=item).count(), 3)
        self.assertEqual(
            History.objects.filter(item=item, viewer__isnull=True).count(), 1
        )

    def test_detail_missing_item_raises(self):
        with self.assertRaises(NotFound):
            self.service.detail(999999)

    def test_browse_returns_only_on_sale(self):
        on_sale = make_item(self.seller, self.category)
        make_item(self.seller, self.category, status=Item.Status.INITIAL)
        make_item(self.seller, self.category, status=Item.Status.SOLD_OUT)

        self.assertEqual([item.pk for item in self.service.browse()], [on_sale.pk])

    def test_search_by_name_includes_every_status(self):
        make_item(self.seller, self.category, name="red jacket", status=Item.Status.SOLD_OUT)
        make_item(self.seller, self.category, name="jacket", status=Item.Status.INITIAL)
        make_item(self.seller, self.category, name="cap")

        self.assertEqual(len(self.service.search_by_name("jacket")), 2)

    def test_search_rejects_inverted_price_range(self):
        with self.assertRaises(InvalidInput):
            self.service.search(ItemFilter(price_min=500, price_max=100))

    def test_items_of_seller(self):
        make_item(self.seller, self.category, status=Item.Status.INITIAL)
        make_item(self.seller, self.category, status=Item.Status.SOLD_OUT)
        make_item(self.other, self.category)

        self.assertEqual(len(self.service.items_of_seller(self.seller.pk)), 2)

    def test_image_missing_item_raises(self):
        with self.assertRaises(NotFound):
            self.service.image(999999)


# ============================================================
# Account Tests
# ============================================================


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class AccountServiceTest(TestCase):
    def setUp(self):
        self.service = AccountService(Store())

    def test_register_hashes_password(self):
        user = self.service.register("alice", "s3cret")

        user.refresh_from_db()
        self.assertNotEqual(user.password, "s3cret")
        self.assertEqual(user.balance, 0)

    def test_register_empty_fields_raise(self):
        with self.assertRaises(InvalidInput):
            self.service.register("", "s3cret")
        with self.assertRaises(InvalidInput):
            self.service.register("alice", "")

    def test_login_returns_token_for_user(self):
        user = self.service.register("alice", "s3cret")

        result = self.service.login(user.pk, "s3cret")

        self.assertEqual(result.user.pk, user.pk)
        self.assertEqual(decode_token(result.token).user_id, user.pk)

    def test_login_wrong_password(self):
        user = self.service.register("alice", "s3cret")

        with self.assertRaises(Unauthorized):
            self.service.login(user.pk, "wrong")

    def test_login_unknown_user(self):
        with self.assertRaises(NotFound):
            self.service.login(999999, "s3cret")


class TokenTest(TestCase):
    def test_issue_and_decode(self):
        self.assertEqual(decode_token(issue_token(42)).user_id, 42)

    @override_settings(JWT_EXPIRY_HOURS=-1)
    def test_expired_token_rejected(self):
        token = issue_token(42)
        with self.assertRaises(JWTError):
            decode_token(token)

    def test_token_signed_with_other_secret_rejected(self):
        with override_settings(JWT_SECRET="another-secret"):
            token = issue_token(42)
        with self.assertRaises(JWTError):
            decode_token(token)


# ============================================================
# API Tests
# ============================================================


class APITestBase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.category = Category.objects.create(name="fashion")
        self.seller = make_user(name="seller", balance=200)
        self.buyer = make_user(name="buyer", balance=1000)

    def authenticate(self, user):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(user.pk)}")


@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class AccountAPITest(APITestBase):
    def test_register_and_login(self):
        response = self.client.post(
            "/register", {"name": "carol", "password": "pw"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["name"], "carol")

        response = self.client.post(
            "/login", {"user_id": response.data["id"], "password": "pw"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("token", response.data)

    def test_register_missing_password(self):
        response = self.client.post("/register", {"name": "carol"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_login_wrong_password(self):
        user = AccountService(Store()).register("carol", "pw")

        response = self.client.post(
            "/login", {"user_id": user.pk, "password": "nope"}, format="json"
        )
        self.assertEqual(response.status_code, 401)

    def test_login_unknown_user(self):
        response = self.client.post(
            "/login", {"user_id": 999999, "password": "pw"}, format="json"
        )
        self.assertEqual(response.status_code, 404)

    def test_access_log_masks_password(self):
        with self.assertLogs("marketplace.access", level="INFO") as logs:
            self.client.post(
                "/register", {"name": "carol", "password": "hunter2"}, format="json"
            )

        output = "\n".join(logs.output)
        self.assertIn("/register", output)
        self.assertNotIn("hunter2", output)


class BalanceAPITest(APITestBase):
    def test_requires_authentication(self):
        response = self.client.get("/balance")
        self.assertEqual(response.status_code, 401)

    def test_invalid_token(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")
        response = self.client.get("/balance")
        self.assertEqual(response.status_code, 401)

    def test_get_balance(self):
        self.authenticate(self.buyer)
        response = self.client.get("/balance")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["balance"], 1000)

    def test_recharge(self):
        self.authenticate(self.buyer)
        response = self.client.post("/balance", {"balance": 500}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["balance"], 1500)

    def test_recharge_zero_amount(self):
        self.authenticate(self.buyer)
        response = self.client.post("/balance", {"balance": 0}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("balance", response.data)

        self.buyer.refresh_from_db()
        self.assertEqual(self.buyer.balance, 1000)

    def test_recharge_for_deleted_identity(self):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(999999)}")
        response = self.client.post("/balance", {"balance": 10}, format="json")
        self.assertEqual(response.status_code, 412)


class ItemAPITest(APITestBase):
    def test_add_item(self):
        self.authenticate(self.seller)
        image = SimpleUploadedFile("cap.jpg", b"\xff\xd8cap", content_type="image/jpeg")

        response = self.client.post(
            "/items",
            {
                "name": "cap",
                "category_id": self.category.pk,
                "price": 300,
                "description": "blue",
                "image": image,
            },
            format="multipart",
        )

        self.assertEqual(response.status_code, 200)
        item = Item.objects.get(pk=response.data["id"])
        self.assertEqual(item.status, Item.Status.INITIAL)
        self.assertEqual(item.seller_id, self.seller.pk)

        image_response = self.client.get(f"/items/{item.pk}/image")
        self.assertEqual(image_response.status_code, 200)
        self.assertEqual(image_response["Content-Type"], "image/jpeg")
        self.assertEqual(image_response.content, b"\xff\xd8cap")

    def test_add_item_requires_authentication(self):
        response = self.client.post("/items", {}, format="multipart")
        self.assertEqual(response.status_code, 401)

    def test_add_item_for_deleted_identity(self):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_token(999999)}")
        image = SimpleUploadedFile("cap.jpg", b"cap", content_type="image/jpeg")

        response = self.client.post(
            "/items",
            {"name": "cap", "category_id": self.category.pk, "price": 300, "image": image},
            format="multipart",
        )

        self.assertEqual(response.status_code, 412)
        self.assertFalse(Item.objects.exists())

    def test_add_item_unknown_category(self):
        self.authenticate(self.seller)
        image = SimpleUploadedFile("cap.jpg", b"cap", content_type="image/jpeg")

        response = self.client.post(
            "/items",
            {"name": "cap", "category_id": 999999, "price": 300, "image": image},
            format="multipart",
        )
        self.assertEqual(response.status_code, 400)

    def test_add_item_zero_price(self):
        self.authenticate(self.seller)
        image = SimpleUploadedFile("cap.jpg", b"cap", content_type="image/jpeg")

        response = self.client.post(
            "/items",
            {"name": "cap", "category_id": self.category.pk, "price": 0, "image": image},
            format="multipart",
        )
        self.assertEqual(response.status_code, 400)

    def test_browse(self):
        make_item(self.seller, self.category, name="jacket")
        make_item(self.seller, self.category, name="draft", status=Item.Status.INITIAL)

        response = self.client.get("/items")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["category_name"], "fashion")

    def test_browse_empty(self):
        response = self.client.get("/items")
        self.assertEqual(response.status_code, 404)

    def test_detail_anonymous_and_authenticated_views(self):
        item = make_item(self.seller, self.category)

        response = self.client.get(f"/items/{item.pk}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["views"], 0)
        self.assertEqual(response.data["user_id"], self.seller.pk)
        self.assertEqual(response.data["category_name"], "fashion")

        self.authenticate(self.buyer)
        response = self.client.get(f"/items/{item.pk}")
        self.assertEqual(response.data["views"], 1)

        self.assertTrue(History.objects.filter(item=item, viewer=self.buyer).exists())
        self.assertTrue(History.objects.filter(item=item, viewer__isnull=True).exists())

    def test_detail_not_found(self):
        response = self.client.get("/items/999999")
        self.assertEqual(response.status_code, 404)

    def test_edit_item(self):
        item = make_item(self.seller, self.category, price=500)
        self.authenticate(self.seller)

        response = self.client.put(
            f"/items/{item.pk}", {"price": 800, "name": ""}, format="multipart"
        )

        self.assertEqual(response.status_code, 200)
        item.refresh_from_db()
        self.assertEqual(item.price, 800)
        self.assertEqual(item.name, "jacket")

    def test_edit_replaces_image(self):
        item = make_item(self.seller, self.category)
        self.authenticate(self.seller)
        image = SimpleUploadedFile("new.jpg", b"new-image", content_type="image/jpeg")

        response = self.client.put(f"/items/{item.pk}", {"image": image}, format="multipart")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Store().items.image(item.pk), b"new-image")

    def test_edit_other_users_item(self):
        item = make_item(self.seller, self.category)
        self.authenticate(self.buyer)

        response = self.client.put(f"/items/{item.pk}", {"name": "x"}, format="multipart")
        self.assertEqual(response.status_code, 412)

    def test_sell(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)
        self.authenticate(self.seller)

        response = self.client.post("/sell", {"item_id": item.pk}, format="json")

        self.assertEqual(response.status_code, 200)
        item.refresh_from_db()
        self.assertEqual(item.status, Item.Status.ON_SALE)

    def test_sell_twice(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)
        self.authenticate(self.seller)

        self.client.post("/sell", {"item_id": item.pk}, format="json")
        response = self.client.post("/sell", {"item_id": item.pk}, format="json")
        self.assertEqual(response.status_code, 412)

    def test_sell_other_users_item(self):
        item = make_item(self.seller, self.category, status=Item.Status.INITIAL)
        self.authenticate(self.buyer)

        response = self.client.post("/sell", {"item_id": item.pk}, format="json")
        self.assertEqual(response.status_code, 412)

    def test_categories(self):
        Category.objects.create(name="books")

        response = self.client.get("/items/categories")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["name"] for c in response.data], ["fashion", "books"])

    def test_user_items(self):
        make_item(self.seller, self.category, status=Item.Status.INITIAL)
        make_item(self.seller, self.category, status=Item.Status.SOLD_OUT)

        response = self.client.get(f"/users/{self.seller.pk}/items")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 2)

        response = self.client.get(f"/users/{self.buyer.pk}/items")
        self.assertEqual(response.status_code, 404)

    def test_search_by_name(self):
        make_item(self.seller, self.category, name="red jacket")
        make_item(self.seller, self.category, name="cap")

        response = self.client.get("/search", {"name": "jacket"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([i["name"] for i in response.data], ["red jacket"])

        response = self.client.get("/search", {"name": "scarf"})
        self.assertEqual(response.status_code, 404)

    def test_search_detail(self):
        books = Category.objects.create(name="books")
        make_item(self.seller, self.category, name="jacket", price=300)
        make_item(self.seller, self.category, name="jacket xl", price=900)
        make_item(self.seller, books, name="jacket guide", price=300)
        make_item(
            self.seller, self.category, name="sold jacket", price=300,
            status=Item.Status.SOLD_OUT,
        )

        response = self.client.get(
            "/search/detail",
            {"name": "jacket", "price-max": 500, "category": self.category.pk},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual([i["name"] for i in response.data], ["jacket"])

        response = self.client.get(
            "/search/detail",
            {
                "name": "jacket",
                "price-max": 500,
                "category": self.category.pk,
                "is-include-soldout": "true",
            },
        )
        self.assertEqual({i["name"] for i in response.data}, {"jacket", "sold jacket"})

    def test_search_detail_malformed_filter(self):
        response = self.client.get("/search/detail", {"price-min": "cheap"})
        self.assertEqual(response.status_code, 400)


class PurchaseAPITest(APITestBase):
    def setUp(self):
        super().setUp()
        self.item = make_item(self.seller, self.category, price=500)

    def test_purchase_success(self):
        self.authenticate(self.buyer)

        response = self.client.post(f"/purchase/{self.item.pk}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["balance"], 500)
        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.SOLD_OUT, 500, 700),
        )

    def test_purchase_requires_authentication(self):
        response = self.client.post(f"/purchase/{self.item.pk}")
        self.assertEqual(response.status_code, 401)

    def test_purchase_not_found(self):
        self.authenticate(self.buyer)
        response = self.client.post("/purchase/999999")
        self.assertEqual(response.status_code, 404)

    def test_purchase_insufficient_balance(self):
        User.objects.filter(pk=self.buyer.pk).update(balance=100)
        self.authenticate(self.buyer)

        response = self.client.post(f"/purchase/{self.item.pk}")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            snapshot(self.item, self.buyer, self.seller),
            (Item.Status.ON_SALE, 100, 200),
        )

    def test_purchase_own_item(self):
        self.authenticate(self.seller)
        response = self.client.post(f"/purchase/{self.item.pk}")
        self.assertEqual(response.status_code, 412)

    def test_purchase_sold_out(self):
        self.authenticate(self.buyer)
        self.client.post(f"/purchase/{self.item.pk}")

        response = self.client.post(f"/purchase/{self.item.pk}")

        self.assertEqual(response.status_code, 412)
        self.buyer.refresh_from_db()
        self.assertEqual(self.buyer.balance, 500)


# ============================================================
# Management Command Tests
# ============================================================


class SeedCategoriesCommandTest(TestCase):
    def test_seed_default_categories(self):
        call_command("seed_categories", stdout=StringIO())
        self.assertTrue(Category.objects.filter(name="fashion").exists())

    def test_seed_is_idempotent(self):
        call_command("seed_categories", "books", "toys", stdout=StringIO())
        call_command("seed_categories", "books", stdout=StringIO())

        self.assertEqual(Category.objects.count(), 2)
