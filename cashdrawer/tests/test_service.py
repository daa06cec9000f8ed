"""
Unit Tests for the Drawer Service

Tests cover:
1. Sale finalization and change
2. Deposits and withdrawals
3. Reversal flow
4. Payout suggestions
5. Returned entries detached from stored history
6. Atomicity and per-instance serialization
"""

import threading

import pytest

from cashdrawer.errors import (
    AlreadyRevertedError,
    EntryNotFoundError,
    InsufficientChangeError,
    InsufficientFundsError,
    InsufficientPaymentError,
    InstanceNotFoundError,
    NotRevertibleError,
    ProductNotFoundError,
    StorageError,
)
from cashdrawer.models import EntryType, PartyKind, ReversalPayload
from cashdrawer.service import DrawerService
from cashdrawer.storage import InMemoryStorage, LedgerStore


def setup_drawer(service, float_amount):
    instance = service.create_instance()
    if float_amount:
        service.record_deposit(instance.id, "Bob", float_amount)
    return instance.id


class FailingReversalStore(LedgerStore):
    """Ledger store whose backend drops out when a reversal is written."""

    def append(self, instance_id, payload):
        if isinstance(payload, ReversalPayload):
            raise StorageError("connection to ledger store lost")
        return super().append(instance_id, payload)


class TestSaleFlow:
    """Tests for finalizing a sale."""

    def test_end_to_end_sale(self):
        """Test change and drawer state after a sale paid with four 1000 notes."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        product = service.create_product(instance_id, "Tote bag", 3000, seller_name="Alice")

        response = service.finalize_sale(instance_id, [product], {1000: 4})

        assert response.change_given == {1000: 1}
        assert response.total_price == 3000
        assert response.ledger_entry.entry_type == EntryType.SALE
        assert response.ledger_entry.payload.paid_amount == {1000: 4}
        assert response.ledger_entry.payload.product_ids == [product.id]

        # 5 in the float + 4 tendered - 1 handed back
        assert service.get_balance(instance_id).counts[1000] == 8

    def test_change_can_use_tendered_cash(self):
        """Test that notes just handed over are available as change."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        product = service.create_product(instance_id, "Postcard", 500)

        response = service.finalize_sale(instance_id, [product], {500: 2})

        assert response.change_given == {500: 1}
        assert service.get_balance(instance_id).counts[500] == 1

    def test_exact_payment_gives_no_change(self):
        """Test that an exact payment records an empty change set."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        product = service.create_product(instance_id, "Sticker", 100)

        response = service.finalize_sale(instance_id, [product, product], {100: 2})

        assert response.change_given == {}
        assert response.ledger_entry.payload.product_ids == [product.id, product.id]

    def test_insufficient_payment_appends_nothing(self):
        """Test that underpaying is rejected before touching the ledger."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        product = service.create_product(instance_id, "Tote bag", 3000)

        with pytest.raises(InsufficientPaymentError):
            service.finalize_sale(instance_id, [product], {1000: 2})

        assert len(service.list_entries(instance_id)) == 1

    def test_insufficient_change_appends_nothing(self):
        """Test that a sale is rejected when the drawer cannot make change."""
        service = DrawerService()
        instance_id = setup_drawer(service, {5000: 1})
        product = service.create_product(instance_id, "Mug", 700)

        with pytest.raises(InsufficientChangeError):
            service.finalize_sale(instance_id, [product], {1000: 1})

        assert len(service.list_entries(instance_id)) == 1
        assert service.get_balance(instance_id).total == 5000

    def test_insufficient_change_is_an_insufficient_funds_error(self):
        """Test that callers can catch both drawer shortages the same way."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        product = service.create_product(instance_id, "Mug", 700)

        with pytest.raises(InsufficientFundsError):
            service.finalize_sale(instance_id, [product], {1000: 1})

    def test_discounted_total_overrides_cart_sum(self):
        """Test that a final price from upstream replaces the summed prices."""
        service = DrawerService()
        instance_id = setup_drawer(service, {100: 10})
        product = service.create_product(instance_id, "Tote bag", 3000)

        response = service.finalize_sale(instance_id, [product], {1000: 3}, total_price=2700)

        assert response.total_price == 2700
        assert response.change_given == {100: 3}

    def test_unknown_instance(self):
        """Test that sales against an unknown instance fail."""
        service = DrawerService()

        with pytest.raises(InstanceNotFoundError):
            service.finalize_sale("missing", [], {1000: 1})

    def test_invalid_denomination_rejected(self):
        """Test that tendered cash must use known denominations."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)

        with pytest.raises(ValueError):
            service.finalize_sale(instance_id, [], {300: 1})


class TestCashMovements:
    """Tests for deposits and withdrawals."""

    def test_deposit_and_withdrawal(self):
        """Test recording a float and taking part of it out."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 3, 100: 5})

        entry = service.record_withdrawal(instance_id, "Bob", {1000: 2})

        assert entry.entry_type == EntryType.WITHDRAWAL
        balance = service.get_balance(instance_id)
        assert balance.counts[1000] == 1
        assert balance.total == 1500

    def test_withdrawal_cannot_overdraw_a_denomination(self):
        """Test that a withdrawal needs the exact notes in the drawer."""
        service = DrawerService()
        instance_id = setup_drawer(service, {5000: 1})

        with pytest.raises(InsufficientFundsError):
            service.record_withdrawal(instance_id, "Bob", {1000: 1})

        assert len(service.list_entries(instance_id)) == 1

    def test_entries_listed_in_id_order(self):
        """Test that the ledger reads back in append order."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 1})
        service.record_deposit(instance_id, "Ann", {500: 1})
        service.record_withdrawal(instance_id, "Ann", {500: 1})

        ids = [e.id for e in service.list_entries(instance_id)]

        assert ids == sorted(ids)
        assert len(ids) == 3

    def test_instances_are_isolated(self):
        """Test that one instance's cash never shows up in another's drawer."""
        service = DrawerService()
        first = setup_drawer(service, {1000: 5})
        second = setup_drawer(service, {100: 1})

        assert service.get_balance(first).total == 5000
        assert service.get_balance(second).total == 100


class TestLedgerHistory:
    """Tests that returned entries are copies of the stored history."""

    def test_editing_appended_entry_does_not_change_drawer(self):
        """Test that the entry returned from a deposit is detached from the ledger."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        entry = service.record_deposit(instance_id, "Bob", {1000: 5})

        entry.payload.amount[1000] = 999

        assert service.get_balance(instance_id).counts[1000] == 5
        assert service.get_entry(entry.id).payload.amount == {1000: 5}

    def test_editing_listed_entries_does_not_change_drawer(self):
        """Test that entries read back from the ledger are detached from it."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        product = service.create_product(instance_id, "Tote bag", 3000)
        service.finalize_sale(instance_id, [product], {1000: 4})

        deposit, sale = service.list_entries(instance_id)
        deposit.payload.amount[5000] = 3
        sale.payload.change_given[1000] = 0

        balance = service.get_balance(instance_id)
        assert balance.total == 8000
        assert balance.counts[5000] == 0


class TestReversalFlow:
    """Tests for reverting ledger entries."""

    def test_revert_sale_restores_drawer(self):
        """Test that reverting a sale puts the drawer back where it was."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        product = service.create_product(instance_id, "Tote bag", 3000)
        before = service.get_balance(instance_id)
        sale = service.finalize_sale(instance_id, [product], {1000: 4})

        response = service.revert(sale.ledger_entry.id)

        assert response.ledger_entry.entry_type == EntryType.REVERSAL
        assert response.ledger_entry.payload.original_entry_id == sale.ledger_entry.id
        assert service.get_entry(sale.ledger_entry.id).is_reverted is True
        assert service.get_balance(instance_id) == before

    def test_revert_deposit(self):
        """Test that reverting a deposit removes its cash."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        deposit = service.record_deposit(instance_id, "Ann", {500: 2})

        service.revert(deposit.id)

        assert service.get_balance(instance_id).counts[500] == 0
        assert service.get_balance(instance_id).counts[1000] == 5

    def test_revert_one_deposit_leaves_others(self):
        """Test that reverting a second deposit takes off exactly that deposit."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        second = service.record_deposit(instance_id, "Bob", {1000: 2})

        service.revert(second.id)

        assert service.get_balance(instance_id).counts[1000] == 5
        suggestion = service.suggest_payout(instance_id, PartyKind.DEPOSITOR, "Bob")
        assert suggestion.total_amount == 5000
        assert suggestion.suggested_payout == {1000: 5}

    def test_cannot_revert_twice(self):
        """Test that the second revert fails and leaves the drawer alone."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        deposit = service.record_deposit(instance_id, "Ann", {500: 2})
        service.revert(deposit.id)
        balance = service.get_balance(instance_id)

        with pytest.raises(AlreadyRevertedError):
            service.revert(deposit.id)

        assert service.get_balance(instance_id) == balance
        assert len(service.list_entries(instance_id)) == 3

    def test_cannot_revert_a_reversal(self):
        """Test that reversal entries are not revertible."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        first = service.list_entries(instance_id)[0]
        reversal = service.revert(first.id).ledger_entry

        with pytest.raises(NotRevertibleError):
            service.revert(reversal.id)

    def test_revert_nonexistent_entry(self):
        """Test that reverting an unknown id fails."""
        service = DrawerService()

        with pytest.raises(EntryNotFoundError):
            service.revert(12345)

    def test_reversal_must_target_same_instance(self):
        """Test that the store refuses a reversal pointing into another instance."""
        service = DrawerService()
        first = setup_drawer(service, {1000: 5})
        second = setup_drawer(service, None)
        entry = service.list_entries(first)[0]

        with pytest.raises(EntryNotFoundError):
            service.ledger.append(second, ReversalPayload(original_entry_id=entry.id))

    def test_storage_failure_rolls_back_revert_flag(self):
        """Test that a failed reversal append leaves the original untouched."""
        storage = InMemoryStorage()
        service = DrawerService(storage=storage, ledger=FailingReversalStore(storage))
        instance_id = setup_drawer(service, {1000: 5})
        entry = service.list_entries(instance_id)[0]

        with pytest.raises(StorageError):
            service.revert(entry.id)

        assert service.get_entry(entry.id).is_reverted is False
        assert len(service.list_entries(instance_id)) == 1
        assert service.get_balance(instance_id).counts[1000] == 5


class TestPayouts:
    """Tests for payout suggestions."""

    def _market_day(self, service):
        instance_id = setup_drawer(service, {1000: 2, 100: 10})
        scarf = service.create_product(instance_id, "Scarf", 500, seller_name="Alice")
        hat = service.create_product(instance_id, "Hat", 700, seller_name="Alice")
        service.create_product(instance_id, "Card", 300, seller_name="Carol")
        sale = service.finalize_sale(instance_id, [scarf, hat], {1000: 1, 500: 1})
        return instance_id, sale

    def test_seller_payout(self):
        """Test totals and suggested notes for a seller with two sold products."""
        service = DrawerService()
        instance_id, sale = self._market_day(service)
        assert sale.change_given == {100: 3}

        suggestion = service.suggest_payout(instance_id, PartyKind.SELLER, "Alice")

        assert suggestion.total_amount == 1200
        assert suggestion.suggested_payout == {1000: 1, 100: 2}

    def test_seller_payout_ignores_reverted_sales(self):
        """Test that a reverted sale no longer counts toward the seller."""
        service = DrawerService()
        instance_id, sale = self._market_day(service)
        service.revert(sale.ledger_entry.id)

        suggestion = service.suggest_payout(instance_id, PartyKind.SELLER, "Alice")

        assert suggestion.total_amount == 0
        assert suggestion.suggested_payout == {}

    def test_seller_payout_includes_deleted_products(self):
        """Test that removing a product from the catalog keeps its sales attributable."""
        service = DrawerService()
        instance_id, sale = self._market_day(service)
        service.delete_product(instance_id, sale.ledger_entry.payload.product_ids[1])

        suggestion = service.suggest_payout(instance_id, PartyKind.SELLER, "Alice")

        assert suggestion.total_amount == 1200

    def test_depositor_payout(self):
        """Test that a depositor is owed the value of their deposits."""
        service = DrawerService()
        instance_id, _ = self._market_day(service)

        suggestion = service.suggest_payout(instance_id, PartyKind.DEPOSITOR, "Bob")

        assert suggestion.total_amount == 3000
        assert suggestion.suggested_payout == {1000: 3}

    def test_payout_is_read_only(self):
        """Test that a suggestion records nothing."""
        service = DrawerService()
        instance_id, _ = self._market_day(service)
        count = len(service.list_entries(instance_id))

        service.suggest_payout(instance_id, PartyKind.DEPOSITOR, "Bob")

        assert len(service.list_entries(instance_id)) == count

    def test_payout_committed_by_withdrawal(self):
        """Test that withdrawing the suggested notes empties the seller's share."""
        service = DrawerService()
        instance_id, _ = self._market_day(service)
        suggestion = service.suggest_payout(instance_id, PartyKind.SELLER, "Alice")

        service.record_withdrawal(instance_id, "Alice", suggestion.suggested_payout)

        assert service.get_balance(instance_id).total == 4200 - 1200

    def test_payout_insufficient_funds(self):
        """Test failure when the drawer holds less than the party is owed."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 2})
        service.record_withdrawal(instance_id, "Ann", {1000: 2})

        with pytest.raises(InsufficientFundsError):
            service.suggest_payout(instance_id, PartyKind.DEPOSITOR, "Bob")


class TestCatalog:
    """Tests for catalog operations the sale flow depends on."""

    def test_resolve_cart(self):
        """Test that product ids resolve to products of the same instance."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        product = service.create_product(instance_id, "Scarf", 500)

        assert service.resolve_cart(instance_id, [product.id]) == [product]

    def test_resolve_cart_rejects_foreign_and_deleted_products(self):
        """Test that a cart cannot contain another instance's or a deleted product."""
        service = DrawerService()
        first = setup_drawer(service, None)
        second = setup_drawer(service, None)
        foreign = service.create_product(second, "Scarf", 500)
        deleted = service.create_product(first, "Hat", 700)
        service.delete_product(first, deleted.id)

        with pytest.raises(ProductNotFoundError):
            service.resolve_cart(first, [foreign.id])
        with pytest.raises(ProductNotFoundError):
            service.resolve_cart(first, [deleted.id])

    def test_update_bumps_version(self):
        """Test that editing a product increments its version."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        product = service.create_product(instance_id, "Scarf", 500)

        updated = service.update_product(instance_id, product.id, "Wool scarf", 600, "Alice")

        assert updated.version == 2
        assert updated.price == 600
        assert updated.seller_name == "Alice"

    def test_list_products_ordering(self):
        """Test display order first, then name, with deleted products hidden."""
        service = DrawerService()
        instance_id = setup_drawer(service, None)
        service.create_product(instance_id, "Zine", 200)
        service.create_product(instance_id, "Badge", 100)
        service.create_product(instance_id, "Poster", 900, display_order=1)
        gone = service.create_product(instance_id, "Album", 2000)
        service.delete_product(instance_id, gone.id)

        names = [p.name for p in service.list_products(instance_id)]

        assert names == ["Poster", "Badge", "Zine"]


class TestConcurrency:
    """Tests for serialization of writers on one instance."""

    def test_concurrent_sales_never_double_spend_change(self):
        """Test that five 100 coins cover exactly five of ten simultaneous sales."""
        service = DrawerService()
        instance_id = setup_drawer(service, {100: 5})
        product = service.create_product(instance_id, "Coffee", 900)
        outcomes = []
        barrier = threading.Barrier(10)

        def buy():
            barrier.wait()
            try:
                service.finalize_sale(instance_id, [product], {1000: 1})
                outcomes.append("ok")
            except InsufficientChangeError:
                outcomes.append("no change")

        threads = [threading.Thread(target=buy) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 5
        assert outcomes.count("no change") == 5
        balance = service.get_balance(instance_id)
        assert balance.counts[100] == 0
        assert balance.counts[1000] == 5

    def test_concurrent_reverts_only_one_wins(self):
        """Test that racing reverts on one entry append a single reversal."""
        service = DrawerService()
        instance_id = setup_drawer(service, {1000: 5})
        entry = service.list_entries(instance_id)[0]
        errors = []
        barrier = threading.Barrier(4)

        def revert():
            barrier.wait()
            try:
                service.revert(entry.id)
            except AlreadyRevertedError as e:
                errors.append(e)

        threads = [threading.Thread(target=revert) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 3
        reversals = [e for e in service.list_entries(instance_id) if e.entry_type == EntryType.REVERSAL]
        assert len(reversals) == 1
