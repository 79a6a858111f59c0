"""Property-based checks for the pure pricing helpers and money conservation."""
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlmodel import Session

from common.errors import InsufficientFunds, ValidationError
from common.money import money
from ledger.classroom import ClassroomService
from ledger.db import init_db, make_engine
from ledger.entities import MacroEntities
from ledger.store import LedgerStore
from loans.policy import amortize
from seats.pricing import seat_price
from transfers.service import TransferService

amounts = st.decimals(min_value=Decimal("1"), max_value=Decimal("5000000"), places=2)


@given(principal=amounts, rate=st.sampled_from([0, 3, 4, 6, 8, 10, 12]), weeks=st.integers(1, 24))
def test_amortize_total_covers_principal(principal, rate, weeks):
    plan = amortize(principal, rate, weeks)
    assert plan.total_payment == plan.weekly_payment * weeks
    # rounding each payment to cents can shave at most half a cent per week
    assert plan.total_payment >= principal - Decimal("0.005") * weeks
    if rate:
        assert plan.weekly_payment >= money(principal / weeks)


@given(total=st.decimals(min_value=0, max_value=Decimal("1e10"), places=2), count=st.integers(0, 60))
def test_seat_price_respects_floor(total, count):
    price = seat_price(total, count)
    assert price >= Decimal("10000")
    assert price == price.to_integral_value()


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(
    moves=st.lists(
        st.tuples(st.integers(0, 2), st.integers(0, 2), st.integers(1, 80000)),
        min_size=1,
        max_size=15,
    )
)
def test_transfers_conserve_money(moves):
    engine = make_engine("sqlite://")
    init_db(engine)
    with Session(engine) as session:
        ClassroomService(session, "t").initialize()
        classroom = ClassroomService(session, "t")
        students = [classroom.create_student(f"s{i}") for i in range(3)]
        store = LedgerStore(session)
        for s in students:
            store.credit(s.id, "checking", 50000)
        session.commit()

        def total() -> Decimal:
            cash = sum((sum(store.balances(s.id).values()) for s in students), Decimal("0"))
            return cash + sum(MacroEntities(session, "t").balances().values())

        before = total()
        transfers = TransferService(session, "t")
        for src, dst, amount in moves:
            try:
                if src == dst:
                    transfers.account_transfer(students[src].id, "checking", "savings", amount)
                else:
                    transfers.transfer(students[src].id, students[dst].id, amount)
            except InsufficientFunds:
                pass
        try:
            transfers.collect_tax([s.id for s in students], percentage_rate=10)
        except ValidationError:
            pass  # every checking balance was too small to tax
        transfers.pay_allowance([s.id for s in students], amount=1000)

        assert total() == before
        for s in students:
            assert all(v >= 0 for v in store.balances(s.id).values())
    engine.dispose()
