import logging
from typing import Optional, Sequence

from .balance import reconstruct_balance
from .change import compute_change
from .denominations import (
    DENOMINATIONS,
    DenominationCount,
    add_counts,
    normalize,
    subtract_counts,
    total_value,
    validate_counts,
)
from .errors import (
    AlreadyRevertedError,
    EntryNotFoundError,
    InsufficientChangeError,
    InsufficientFundsError,
    InsufficientPaymentError,
    InstanceNotFoundError,
    NotRevertibleError,
    ProductNotFoundError,
)
from .models import (
    DepositPayload,
    DrawerBalance,
    EntryType,
    LedgerEntry,
    PartyKind,
    PayoutSuggestion,
    PosInstance,
    Product,
    ReversalPayload,
    RevertResponse,
    SalePayload,
    SaleResponse,
    WithdrawalPayload,
)
from .storage import Catalog, InMemoryStorage, InstanceStore, LedgerStore

logger = logging.getLogger("cashdrawer.service")


class DrawerService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        ledger: Optional[LedgerStore] = None,
        denominations: Sequence[int] = DENOMINATIONS,
    ):
        self.storage = storage or InMemoryStorage()
        self.ledger = ledger or LedgerStore(self.storage)
        self.catalog = Catalog(self.storage)
        self.instances = InstanceStore(self.storage)
        self.denominations = tuple(sorted(denominations, reverse=True))

    # -- instances and catalog --

    def create_instance(self) -> PosInstance:
        instance = self.instances.create()
        logger.info("Created POS instance %s", instance.id)
        return instance

    def get_instance(self, instance_id: str) -> PosInstance:
        instance = self.instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"POS instance {instance_id} not found")
        return instance

    def list_products(self, instance_id: str) -> list[Product]:
        self.get_instance(instance_id)
        return self.catalog.list_products(instance_id)

    def create_product(
        self,
        instance_id: str,
        name: str,
        price: int,
        seller_name: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Product:
        self.get_instance(instance_id)
        return self.catalog.create_product(instance_id, name, price, seller_name, display_order)

    def get_product(self, instance_id: str, product_id: int) -> Product:
        product = self.catalog.get_product(product_id)
        if product is None or product.pos_instance_id != instance_id or product.is_deleted:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return product

    def update_product(
        self,
        instance_id: str,
        product_id: int,
        name: str,
        price: int,
        seller_name: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Product:
        self.get_product(instance_id, product_id)
        return self.catalog.update_product(product_id, name, price, seller_name, display_order)

    def delete_product(self, instance_id: str, product_id: int) -> None:
        self.get_product(instance_id, product_id)
        self.catalog.delete_product(product_id)

    def resolve_cart(self, instance_id: str, product_ids: Sequence[int]) -> list[Product]:
        self.get_instance(instance_id)
        return [self.get_product(instance_id, product_id) for product_id in product_ids]

    # -- ledger reads --

    def list_entries(self, instance_id: str) -> list[LedgerEntry]:
        self.get_instance(instance_id)
        return self.ledger.list_all(instance_id)

    def get_entry(self, entry_id: int) -> LedgerEntry:
        entry = self.ledger.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        return entry

    def current_counts(self, instance_id: str) -> DenominationCount:
        return reconstruct_balance(self.ledger.list_all(instance_id), self.denominations)

    def get_balance(self, instance_id: str) -> DrawerBalance:
        self.get_instance(instance_id)
        counts = self.current_counts(instance_id)
        return DrawerBalance(pos_instance_id=instance_id, counts=counts, total=total_value(counts))

    # -- cash movements --

    def record_deposit(self, instance_id: str, person: str, amount: dict[int, int]) -> LedgerEntry:
        self.get_instance(instance_id)
        payload = DepositPayload(person=person, amount=amount)
        with self.ledger.transaction(instance_id):
            entry = self.ledger.append(instance_id, payload)
        logger.info(
            "Deposit %s of %d by %s on instance %s",
            entry.id, total_value(payload.amount), person, instance_id,
        )
        return entry

    def record_withdrawal(self, instance_id: str, person: str, amount: dict[int, int]) -> LedgerEntry:
        self.get_instance(instance_id)
        payload = WithdrawalPayload(person=person, amount=amount)
        with self.ledger.transaction(instance_id):
            balance = self.current_counts(instance_id)
            remaining = subtract_counts(balance, payload.amount)
            short = {d: c for d, c in remaining.items() if c < 0 and d in payload.amount}
            if short:
                logger.warning(
                    "Withdrawal by %s on instance %s rejected, drawer short of %s",
                    person, instance_id, sorted(short, reverse=True),
                )
                raise InsufficientFundsError(
                    "Drawer does not hold enough of denomination(s) "
                    + ", ".join(str(d) for d in sorted(short, reverse=True))
                )
            entry = self.ledger.append(instance_id, payload)
        logger.info(
            "Withdrawal %s of %d by %s on instance %s",
            entry.id, total_value(payload.amount), person, instance_id,
        )
        return entry

    # -- sales --

    def finalize_sale(
        self,
        instance_id: str,
        cart: Sequence[Product],
        tendered: dict[int, int],
        total_price: Optional[int] = None,
    ) -> SaleResponse:
        """Take payment for ``cart`` and hand back change from the drawer.

        ``total_price`` overrides the summed cart price when a discount has
        already been applied upstream. Appends exactly one sale entry, or
        nothing at all if payment or change falls short.
        """
        self.get_instance(instance_id)
        tendered = validate_counts(tendered, self.denominations)
        if total_price is None:
            total_price = sum(product.price for product in cart)
        total_tendered = total_value(tendered)
        if total_tendered < total_price:
            logger.warning(
                "Sale on instance %s rejected, tendered %d for price %d",
                instance_id, total_tendered, total_price,
            )
            raise InsufficientPaymentError(
                f"Paid {total_tendered} is less than the total price {total_price}"
            )
        change_due = total_tendered - total_price

        with self.ledger.transaction(instance_id):
            # The tendered cash is in the drawer before any change comes out.
            post_tender = add_counts(self.current_counts(instance_id), tendered)
            try:
                if total_value({d: c for d, c in post_tender.items() if c > 0}) < change_due:
                    raise InsufficientFundsError(f"Drawer holds less than {change_due}")
                change_given = compute_change(post_tender, change_due, self.denominations)
            except InsufficientFundsError as e:
                logger.warning("Sale on instance %s rejected: %s", instance_id, e)
                raise InsufficientChangeError(f"Insufficient change in drawer: {e}") from e

            payload = SalePayload(
                product_ids=[product.id for product in cart],
                total_price=total_price,
                paid_amount=tendered,
                change_given=change_given,
            )
            entry = self.ledger.append(instance_id, payload)

        logger.info(
            "Sale %s on instance %s: price %d, paid %d, change %d",
            entry.id, instance_id, total_price, total_tendered, change_due,
        )
        return SaleResponse(
            ledger_entry=entry,
            total_price=total_price,
            change_given=normalize(change_given),
            message="Sale recorded successfully",
        )

    # -- reversals --

    def revert(self, entry_id: int) -> RevertResponse:
        entry = self.get_entry(entry_id)
        instance_id = entry.pos_instance_id
        with self.ledger.transaction(instance_id):
            # Re-read under the lock; a concurrent revert may have won.
            entry = self.get_entry(entry_id)
            if entry.entry_type == EntryType.REVERSAL:
                raise NotRevertibleError(f"Entry {entry_id} is a reversal and cannot be reverted")
            if entry.is_reverted:
                logger.warning("Entry %s on instance %s is already reverted", entry_id, instance_id)
                raise AlreadyRevertedError(f"Entry {entry_id} is already reverted")
            self.ledger.mark_reverted(entry_id)
            reversal = self.ledger.append(instance_id, ReversalPayload(original_entry_id=entry_id))

        logger.info(
            "Reverted %s entry %s on instance %s with reversal %s",
            entry.entry_type.value, entry_id, instance_id, reversal.id,
        )
        return RevertResponse(ledger_entry=reversal, message="Entry reverted successfully")

    # -- payouts --

    def seller_total(self, instance_id: str, seller_name: str, entries: Sequence[LedgerEntry]) -> int:
        prices = {p.id: p.price for p in self.catalog.find_products_by_seller(instance_id, seller_name)}
        return sum(
            prices[product_id]
            for entry in entries
            if isinstance(entry.payload, SalePayload) and not entry.is_reverted
            for product_id in entry.payload.product_ids
            if product_id in prices
        )

    @staticmethod
    def depositor_total(person: str, entries: Sequence[LedgerEntry]) -> int:
        return sum(
            total_value(entry.payload.amount)
            for entry in entries
            if isinstance(entry.payload, DepositPayload)
            and not entry.is_reverted
            and entry.payload.person == person
        )

    def suggest_payout(self, instance_id: str, party_kind: PartyKind, party_name: str) -> PayoutSuggestion:
        """Propose notes and coins to settle what a party is owed. Records nothing."""
        self.get_instance(instance_id)
        entries = self.ledger.list_all(instance_id)
        if party_kind == PartyKind.SELLER:
            total_amount = self.seller_total(instance_id, party_name, entries)
        else:
            total_amount = self.depositor_total(party_name, entries)

        balance = reconstruct_balance(entries, self.denominations)
        in_drawer = total_value({d: c for d, c in balance.items() if c > 0})
        if in_drawer < total_amount:
            raise InsufficientFundsError(
                f"Insufficient funds in drawer. Have {in_drawer}, need {total_amount}."
            )
        payout = compute_change(balance, total_amount, self.denominations)
        return PayoutSuggestion(
            pos_instance_id=instance_id,
            party_kind=party_kind,
            party_name=party_name,
            total_amount=total_amount,
            suggested_payout=normalize(payout),
        )
