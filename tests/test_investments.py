from decimal import Decimal

import pytest
from sqlmodel import select

from common.errors import (BelowMinimumHolding, ConflictError,
                           InsufficientFunds, InsufficientHoldings,
                           PersistenceError, ValidationError)
from investments.market import Market
from investments.orders import OrderService, order_quantity
from investments.portfolio import Portfolio
from ledger.entities import MacroEntities
from ledger.models import EntityKind, Transaction, TransactionStatus
from ledger.store import LedgerStore
from tests.test_helpers import TEACHER_ID, identity_for


@pytest.fixture
def stock(session, classroom):
    asset = Market(session).register("SAMS", "Samsung Electronics", "stock", 50000)
    session.commit()
    return asset


@pytest.fixture
def bitcoin(session, classroom):
    asset = Market(session).register(
        "BTC", "Bitcoin", "cryptocurrency", 80000000, min_quantity="0.0001"
    )
    session.commit()
    return asset


def _set_price(session, asset, price):
    Market(session).update_price(asset.id, price)
    session.commit()


def test_buy_then_sell_at_higher_price(session, make_student, stock):
    student = make_student(checking=100000)
    orders = OrderService(session, identity_for(student))

    bought = orders.buy(stock.id, 1, account_type="checking")
    assert bought.total == Decimal("50000.00")
    assert bought.fee == Decimal("50.00")
    assert bought.remaining_balance == Decimal("49950.00")

    _set_price(session, stock, 60000)
    sold = orders.sell(stock.id, 1, account_type="checking")
    assert sold.brokerage_fee == Decimal("60.00")
    assert sold.trading_tax == Decimal("120.00")
    assert sold.net_amount == Decimal("59820.00")
    assert sold.new_balance == Decimal("109770.00")
    assert sold.profit_amount == Decimal("10000.00")
    assert sold.profit_percent == Decimal("20.00")

    entities = MacroEntities(session, TEACHER_ID).balances()
    assert entities["securities"] == Decimal("110.00")
    assert entities["government"] == Decimal("100000120.00")
    assert Portfolio(session).holding(student.id, stock.id) is None


def test_round_trip_at_same_price_loses_only_fees(session, make_student, stock):
    student = make_student(investment=200000)
    orders = OrderService(session, identity_for(student))
    orders.buy(stock.id, 2)
    sold = orders.sell(stock.id, 2)
    # 100 brokerage on the buy, 100 brokerage and 200 tax on the sell
    assert sold.new_balance == Decimal("199600.00")
    assert sold.profit_amount == Decimal("0.00")


def test_sell_records_fee_entries(session, make_student, stock):
    student = make_student(investment=100000)
    orders = OrderService(session, identity_for(student))
    orders.buy(stock.id, 1)
    orders.sell(stock.id, 1)

    types = [t.type for t in session.exec(select(Transaction).order_by(Transaction.id)).all()]
    assert types == ["investment_buy", "investment_sell", "brokerage_fee", "trading_tax"]


def test_failed_buy_changes_nothing(session, make_student, stock):
    student = make_student(investment=1000)
    orders = OrderService(session, identity_for(student))
    with pytest.raises(InsufficientFunds):
        orders.buy(stock.id, 1)

    assert LedgerStore(session).get_balance(student.id, "investment") == Decimal("1000.00")
    assert Portfolio(session).holding(student.id, stock.id) is None
    assert session.exec(select(Transaction)).all() == []


def test_quoted_price_must_match(session, make_student, stock):
    student = make_student(investment=100000)
    with pytest.raises(ConflictError):
        OrderService(session, identity_for(student)).buy(stock.id, 1, quoted_price=49000)


def test_stocks_trade_in_whole_units(session, make_student, stock):
    student = make_student(investment=100000)
    with pytest.raises(ValidationError):
        OrderService(session, identity_for(student)).buy(stock.id, "1.5")


def test_crypto_fractional_orders(session, make_student, bitcoin):
    student = make_student(investment=100000)
    orders = OrderService(session, identity_for(student))

    bought = orders.buy(bitcoin.id, "0.0005")
    assert bought.total == Decimal("40000.00")
    assert bought.remaining_balance == Decimal("59960.00")

    with pytest.raises(ValidationError):
        orders.buy(bitcoin.id, "0.00005")
    with pytest.raises(BelowMinimumHolding):
        orders.sell(bitcoin.id, "0.00045")
    with pytest.raises(InsufficientHoldings):
        orders.sell(bitcoin.id, "0.001")

    orders.sell(bitcoin.id, "0.0005")
    assert Portfolio(session).holding(student.id, bitcoin.id) is None


def test_order_quantity_precision(stock, bitcoin):
    assert order_quantity(bitcoin, "0.00012345") == Decimal("0.00012345")
    with pytest.raises(ValidationError):
        order_quantity(bitcoin, "0.000123456")
    with pytest.raises(ValidationError):
        order_quantity(stock, 0)


def test_weighted_average_and_partial_sell(session, make_student, classroom):
    etf = Market(session).register("KODEX", "KODEX 200", "etf", 100)
    session.commit()
    student = make_student(investment=10000)
    orders = OrderService(session, identity_for(student))
    portfolio = Portfolio(session)

    orders.buy(etf.id, 1)
    _set_price(session, etf, 200)
    orders.buy(etf.id, 1)
    holding = portfolio.holding(student.id, etf.id)
    assert holding.quantity == Decimal("2")
    assert holding.average_price == Decimal("150")
    assert holding.total_invested == Decimal("300.00")

    sold = orders.sell(etf.id, 1)
    holding = portfolio.holding(student.id, etf.id)
    assert holding.average_price == Decimal("150")
    assert holding.total_invested == Decimal("150.00")
    assert sold.profit_amount == Decimal("50.00")


def test_apply_sell_reports_cost_and_profit(session, make_student, stock):
    student = make_student()
    portfolio = Portfolio(session)
    portfolio.apply_buy(student.id, stock, Decimal("3"), Decimal("100"))
    portfolio.apply_buy(student.id, stock, Decimal("1"), Decimal("200"))

    result = portfolio.apply_sell(student.id, stock, Decimal("2"), Decimal("170"))
    assert result.cost_basis == Decimal("250.00")
    assert result.realized_profit == Decimal("90.00")
    holding = portfolio.holding(student.id, stock.id)
    assert holding.quantity == Decimal("2")
    assert holding.total_invested == Decimal("250.00")


def test_stale_version_is_rejected(session, make_student, stock):
    student = make_student(investment=200000)
    orders = OrderService(session, identity_for(student))
    orders.buy(stock.id, 1)
    orders.buy(stock.id, 1)
    holding = Portfolio(session).holding(student.id, stock.id)

    with pytest.raises(ConflictError):
        orders.sell(stock.id, 1, expected_version=holding.version - 1)
    assert Portfolio(session).holding(student.id, stock.id).quantity == Decimal("2")

    orders.sell(stock.id, 1, expected_version=holding.version)


def test_portfolio_summary(session, make_student, stock):
    student = make_student(investment=200000)
    OrderService(session, identity_for(student)).buy(stock.id, 2)
    _set_price(session, stock, 55000)

    summary = Portfolio(session).summary(student.id)
    assert summary.total_invested == Decimal("100000.00")
    assert summary.current_value == Decimal("110000.00")
    assert summary.profit_loss_percent == Decimal("10.00")
    assert summary.holdings[0].weight == Decimal("100.00")
    assert summary.cash_balance == Decimal("99900.00")
    assert summary.total_assets == Decimal("209900.00")


def test_buy_survives_missing_fee_sink(session, make_student, stock):
    student = make_student(investment=100000)
    entities = MacroEntities(session, TEACHER_ID)
    session.delete(entities.get(EntityKind.SECURITIES))
    session.commit()

    receipt = OrderService(session, identity_for(student)).buy(stock.id, 1)
    assert receipt.fee_sink_ok is False
    assert receipt.remaining_balance == Decimal("49950.00")

    failed = session.exec(
        select(Transaction).where(Transaction.status == TransactionStatus.FAILED.value)
    ).all()
    assert [t.type for t in failed] == ["brokerage_fee"]


def test_strict_fee_sink_rejects_the_order(session, make_student, stock, monkeypatch):
    monkeypatch.setenv("FEE_SINK_STRICT", "true")
    student = make_student(investment=100000)
    entities = MacroEntities(session, TEACHER_ID)
    session.delete(entities.get(EntityKind.SECURITIES))
    session.commit()

    with pytest.raises(PersistenceError):
        OrderService(session, identity_for(student)).buy(stock.id, 1)
    assert LedgerStore(session).get_balance(student.id, "investment") == Decimal("100000.00")
    assert Portfolio(session).holding(student.id, stock.id) is None


def test_register_rejects_bad_assets(session, classroom, stock):
    market = Market(session)
    with pytest.raises(ValidationError):
        market.register("X", "X", "tulips", 10)
    with pytest.raises(ValidationError):
        market.register("Y", "Y", "stock", 10, min_quantity="0.5")
    with pytest.raises(ConflictError):
        market.register("sams", "Duplicate", "stock", 10)
