"""
Property-based tests for the stock ledger.

Random sequences of ledger operations (receipts, dispenses, reservations,
minimum-stock changes) are applied; some are rejected.  Whatever happens:

- available stock never goes negative
- replaying the accepted entries over the opening balance reproduces the
  final balance
- the persisted ledger agrees with the pure model and reconciles cleanly
"""

from hypothesis import HealthCheck, given, settings, strategies as st

from pharmacy_kernel.domain.ledger_effects import (
    LEDGER_EFFECTS,
    EffectTarget,
    StockBalance,
    TransactionType,
    apply_effect,
    replay,
)
from pharmacy_kernel.exceptions import ValidationError
from pharmacy_kernel.models.stock import Stock

_BALANCE_TYPES = [
    t for t, effect in LEDGER_EFFECTS.items() if effect.target is not EffectTarget.NONE
]


@st.composite
def ledger_operation(draw):
    """(type, quantity, min_stock_change, min_stock_target) with valid signs."""
    transaction_type = draw(st.sampled_from(_BALANCE_TYPES))
    effect = LEDGER_EFFECTS[transaction_type]
    magnitude = draw(st.integers(min_value=1, max_value=60))
    if effect.carries_quantity:
        return transaction_type, effect.sign * magnitude, None, None
    if effect.absolute:
        return transaction_type, None, None, draw(st.integers(min_value=0, max_value=80))
    return transaction_type, None, effect.sign * magnitude, None


operations = st.lists(ledger_operation(), min_size=1, max_size=25)
openings = st.builds(
    StockBalance,
    total_quantity=st.integers(min_value=0, max_value=200),
    reserved_qty=st.just(0),
    minimum_stock=st.integers(min_value=0, max_value=50),
)


class _Entry:
    def __init__(self, applied):
        self.type = applied.transaction_type
        self.quantity = applied.quantity
        self.min_stock_change = applied.min_stock_change


def _apply_all(opening, ops):
    balance = opening
    accepted = []
    for transaction_type, quantity, change, target in ops:
        try:
            applied = apply_effect(balance, transaction_type, quantity, change, target)
        except ValidationError:
            continue
        accepted.append(applied)
        balance = applied.after
    return balance, accepted


class TestPureLedgerProperties:
    @given(opening=openings, ops=operations)
    def test_available_never_negative(self, opening, ops):
        balance = opening
        for transaction_type, quantity, change, target in ops:
            try:
                balance = apply_effect(balance, transaction_type, quantity, change, target).after
            except ValidationError:
                pass
            assert balance.available_stock >= 0
            assert balance.reserved_qty >= 0
            assert balance.minimum_stock >= 0

    @given(opening=openings, ops=operations)
    def test_replay_equals_sequential_application(self, opening, ops):
        final, accepted = _apply_all(opening, ops)
        assert replay(opening, [_Entry(a) for a in accepted]) == final

    @given(opening=openings, ops=operations)
    def test_snapshots_chain(self, opening, ops):
        _, accepted = _apply_all(opening, ops)
        previous = opening
        for applied in accepted:
            assert applied.before == previous
            previous = applied.after

    @given(balance=openings, quantity=st.integers(min_value=1, max_value=500))
    def test_dispense_beyond_available_rejected(self, balance, quantity):
        if quantity <= balance.available_stock:
            return
        try:
            apply_effect(balance, TransactionType.DISPENSE_EXTERNAL, -quantity)
        except ValidationError:
            return
        raise AssertionError("dispense beyond available stock was accepted")


class TestPersistedLedgerProperties:
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(opening=openings, ops=operations)
    def test_persisted_ledger_matches_model(
        self, session, ledger, reconciliation, make_stock, actor_id, opening, ops
    ):
        stock = make_stock(
            quantity=opening.total_quantity, minimum_stock=opening.minimum_stock
        )
        for transaction_type, quantity, change, target in ops:
            try:
                ledger.record(
                    stock.id,
                    actor_id,
                    transaction_type,
                    quantity,
                    min_stock_change=change,
                    min_stock_target=target,
                )
            except ValidationError:
                pass

        expected, accepted = _apply_all(opening, ops)
        row = session.get(Stock, stock.id)
        assert StockBalance(row.total_quantity, row.reserved_qty, row.minimum_stock) == expected
        assert row.ledger_seq == len(accepted)
        assert reconciliation.check(row).is_consistent
