"""Tests for the portfolio ledger: weighted-average cost and realized P&L."""

from decimal import Decimal

import pytest

from execution.errors import LedgerError
from execution.ledger import PortfolioLedger
from execution.models import OrderSide
from store.database import TradingDatabase
from store.instruments import Instrument, InstrumentStore


def _fill(db: TradingDatabase, ledger: PortfolioLedger, instrument_id: int, qty: int, price: str, side: OrderSide, fee: str = "0"):
    with db.transaction() as tx:
        return ledger.apply_fill(tx, instrument_id, qty, Decimal(price), side, Decimal(fee))


def test_first_buy_creates_position(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    pos = _fill(db, ledger, tsmc.id, 100, "50", OrderSide.BUY, "20")
    assert pos.quantity == 100
    assert pos.total_cost == Decimal("5020")
    assert pos.average_cost == Decimal("50.2")
    assert pos.realized_pnl == 0
    assert ledger.get_position(tsmc.id) == pos


def test_buys_average_cost_including_commission(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    _fill(db, ledger, tsmc.id, 50, "50", OrderSide.BUY, "20")
    pos = _fill(db, ledger, tsmc.id, 50, "51", OrderSide.BUY, "1.25")
    assert pos.quantity == 100
    assert pos.total_cost == Decimal("5071.25")
    assert pos.average_cost == Decimal("50.7125")


def test_sell_realizes_pnl_and_keeps_average(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    _fill(db, ledger, tsmc.id, 100, "50", OrderSide.BUY, "0")
    pos = _fill(db, ledger, tsmc.id, 40, "58.5", OrderSide.SELL, "2.7")
    # 40*58.5 - 40*50 - 2.7
    assert pos.realized_pnl == Decimal("337.3")
    assert pos.quantity == 60
    assert pos.average_cost == Decimal("50")
    assert pos.total_cost == Decimal("3000")


def test_full_sell_keeps_row_with_realized_pnl(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    _fill(db, ledger, tsmc.id, 10, "100", OrderSide.BUY)
    _fill(db, ledger, tsmc.id, 10, "110", OrderSide.SELL, "20")
    pos = ledger.get_position(tsmc.id)
    assert pos is not None
    assert pos.quantity == 0
    assert pos.realized_pnl == Decimal("80")
    assert ledger.positions() == []
    assert len(ledger.positions(include_closed=True)) == 1


def test_rebuy_after_close_resets_average(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    _fill(db, ledger, tsmc.id, 10, "100", OrderSide.BUY)
    _fill(db, ledger, tsmc.id, 10, "100", OrderSide.SELL)
    pos = _fill(db, ledger, tsmc.id, 5, "80", OrderSide.BUY)
    assert pos.average_cost == Decimal("80")
    assert pos.total_cost == Decimal("400")


def test_full_close_clears_cost_basis_residue(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    # 3020 / 3 does not terminate, so avg*3 leaves a residue against total
    _fill(db, ledger, tsmc.id, 3, "100", OrderSide.BUY, "20")
    closed = _fill(db, ledger, tsmc.id, 3, "100", OrderSide.SELL)
    assert closed.quantity == 0
    assert closed.total_cost == 0
    assert closed.average_cost == 0
    assert ledger.get_position(tsmc.id).total_cost == 0

    pos = _fill(db, ledger, tsmc.id, 1, "50", OrderSide.BUY)
    assert pos.average_cost == Decimal("50")
    assert pos.total_cost == Decimal("50")


def test_commissioned_buys_then_partial_sell(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    bought = _fill(db, ledger, tsmc.id, 100, "50", OrderSide.BUY, "71.25")
    assert bought.total_cost == Decimal("5071.25")
    assert bought.average_cost == Decimal("50.7125")

    pos = _fill(db, ledger, tsmc.id, 40, "60", OrderSide.SELL, "34.20")
    # 40*60 - 40*50.7125 - 34.20
    assert pos.realized_pnl == Decimal("337.30")
    assert pos.quantity == 60
    assert pos.average_cost == Decimal("50.7125")
    assert pos.total_cost == Decimal("3042.75")


def test_oversell_raises_and_rolls_back(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    _fill(db, ledger, tsmc.id, 10, "100", OrderSide.BUY)
    with pytest.raises(LedgerError):
        _fill(db, ledger, tsmc.id, 11, "100", OrderSide.SELL)
    assert ledger.held_quantity(tsmc.id) == 10


def test_sell_without_position_raises(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument) -> None:
    with pytest.raises(LedgerError):
        _fill(db, ledger, tsmc.id, 1, "100", OrderSide.SELL)
    assert ledger.get_position(tsmc.id) is None


@pytest.mark.parametrize("qty", [0, -5])
def test_non_positive_delta_raises(db: TradingDatabase, ledger: PortfolioLedger, tsmc: Instrument, qty: int) -> None:
    with pytest.raises(LedgerError):
        _fill(db, ledger, tsmc.id, qty, "100", OrderSide.BUY)


def test_snapshot_marks_to_market(
    db: TradingDatabase, ledger: PortfolioLedger, instruments: InstrumentStore, tsmc: Instrument
) -> None:
    _fill(db, ledger, tsmc.id, 1000, "100", OrderSide.BUY)
    instruments.update_price(tsmc.id, Decimal("110"))
    [item] = ledger.snapshot()
    assert item.symbol == "2330"
    assert item.name == "TSMC"
    assert item.current_price == Decimal("110")
    assert item.market_value == Decimal("110000")
    assert item.cost_basis == Decimal("100000")
    assert item.unrealized_pnl == Decimal("9575.95")
    assert item.return_rate == Decimal("0.0957595")


def test_snapshot_sorted_by_symbol_and_skips_closed(
    db: TradingDatabase, ledger: PortfolioLedger, instruments: InstrumentStore, tsmc: Instrument
) -> None:
    alpha = instruments.add("1101", "Taiwan Cement", Decimal("40"))
    zeta = instruments.add("9999", "Closed Co", Decimal("10"))
    _fill(db, ledger, tsmc.id, 1, "100", OrderSide.BUY)
    _fill(db, ledger, alpha.id, 1, "40", OrderSide.BUY)
    _fill(db, ledger, zeta.id, 1, "10", OrderSide.BUY)
    _fill(db, ledger, zeta.id, 1, "12", OrderSide.SELL)
    assert [i.symbol for i in ledger.snapshot()] == ["1101", "2330"]


def test_summary_includes_realized_from_closed_positions(
    db: TradingDatabase, ledger: PortfolioLedger, instruments: InstrumentStore, tsmc: Instrument
) -> None:
    other = instruments.add("2317", "Hon Hai", Decimal("100"))
    _fill(db, ledger, other.id, 10, "100", OrderSide.BUY)
    _fill(db, ledger, other.id, 10, "120", OrderSide.SELL, "20")
    _fill(db, ledger, tsmc.id, 1000, "100", OrderSide.BUY)
    instruments.update_price(tsmc.id, Decimal("110"))

    s = ledger.summary()
    assert s.total_market_value == Decimal("110000")
    assert s.total_cost == Decimal("100000")
    assert s.total_unrealized_pnl == Decimal("9575.95")
    assert s.total_realized_pnl == Decimal("180")
    assert s.total_return_rate == Decimal("0.0957595")


def test_summary_empty_portfolio(ledger: PortfolioLedger) -> None:
    s = ledger.summary()
    assert s.total_market_value == 0
    assert s.total_return_rate == 0
