"""Tests for the SQLite store: instruments, quotes and the price-update channel."""

import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest

from store.database import TradingDatabase, from_db_ts, to_db_ts
from store.instruments import InstrumentStore


def test_add_normalizes_symbol_and_round_trips_price(instruments: InstrumentStore) -> None:
    inst = instruments.add(" tsm ", "TSMC ADR", "187.35")
    assert inst.symbol == "TSM"
    assert inst.current_price == Decimal("187.35")
    assert instruments.get(inst.id) == inst
    assert instruments.get_by_symbol("tsm") == inst


def test_add_existing_symbol_updates_in_place(instruments: InstrumentStore) -> None:
    first = instruments.add("2330", "TSMC", Decimal("100"))
    second = instruments.add("2330", "Taiwan Semiconductor", Decimal("101"))
    assert second.id == first.id
    assert second.name == "Taiwan Semiconductor"
    assert len(instruments.list()) == 1


@pytest.mark.parametrize("price", ["0", "-3", "abc"])
def test_add_rejects_bad_price(instruments: InstrumentStore, price: str) -> None:
    with pytest.raises(ValueError):
        instruments.add("2330", "TSMC", price)


def test_list_sorted_by_symbol(instruments: InstrumentStore) -> None:
    instruments.add("2330", "TSMC", 100)
    instruments.add("1101", "Taiwan Cement", 40)
    assert [i.symbol for i in instruments.list()] == ["1101", "2330"]


def test_search_matches_symbol_or_name_ignoring_case(instruments: InstrumentStore) -> None:
    instruments.add("2330", "Taiwan Semiconductor", 100)
    instruments.add("2317", "Hon Hai Precision", 50)
    instruments.add("1101", "Taiwan Cement", 40)

    assert [i.symbol for i in instruments.search("taiwan")] == ["1101", "2330"]
    assert [i.symbol for i in instruments.search("23")] == ["2317", "2330"]
    assert [i.symbol for i in instruments.search("PRECISION")] == ["2317"]
    assert instruments.search("nothing like it") == []


@pytest.mark.parametrize("keyword", [None, "", "   "])
def test_search_without_keyword_lists_all(instruments: InstrumentStore, keyword) -> None:
    instruments.add("2330", "TSMC", 100)
    instruments.add("1101", "Taiwan Cement", 40)
    assert [i.symbol for i in instruments.search(keyword)] == ["1101", "2330"]


def test_search_treats_wildcards_literally(instruments: InstrumentStore) -> None:
    instruments.add("2330", "TSMC", 100)
    instruments.add("0050", "Top 50% ETF", 150)
    assert [i.symbol for i in instruments.search("%")] == ["0050"]
    assert instruments.search("_") == []


def test_current_price_unknown_raises(instruments: InstrumentStore) -> None:
    with pytest.raises(KeyError):
        instruments.current_price(42)
    assert instruments.update_price(42, Decimal("1")) is None


def test_subscription_sees_only_new_updates(instruments: InstrumentStore) -> None:
    a = instruments.add("2330", "TSMC", 100)
    b = instruments.add("2317", "Hon Hai", 50)
    sub = instruments.subscribe()
    assert sub.poll() == []

    instruments.update_price(b.id, Decimal("51"))
    instruments.update_price(a.id, Decimal("101"))
    updates = sub.poll()
    assert [(u.symbol, u.price) for u in updates] == [("2317", Decimal("51")), ("2330", Decimal("101"))]
    assert sub.last_seq == updates[-1].seq
    assert sub.poll() == []


def test_subscription_coalesces_repeated_updates(instruments: InstrumentStore) -> None:
    a = instruments.add("2330", "TSMC", 100)
    sub = instruments.subscribe()
    instruments.update_price(a.id, Decimal("101"))
    instruments.update_price(a.id, Decimal("102"))
    [update] = sub.poll()
    assert update.price == Decimal("102")


def test_subscription_from_start(instruments: InstrumentStore) -> None:
    instruments.add("2330", "TSMC", 100)
    assert len(instruments.subscribe(from_start=True).poll()) == 1


def test_transaction_rolls_back_on_error(db: TradingDatabase) -> None:
    with pytest.raises(RuntimeError):
        with db.transaction() as tx:
            tx.execute(
                "INSERT INTO instruments (symbol, name, current_price, updated_at) VALUES ('X', 'x', '1', ?)",
                (to_db_ts(from_db_ts("2025-01-01T00:00:00+00:00")),),
            )
            raise RuntimeError("boom")
    with db.read() as c:
        assert c.execute("SELECT COUNT(*) FROM instruments").fetchone()[0] == 0


def test_schema_forbids_negative_position(db: TradingDatabase, instruments: InstrumentStore) -> None:
    inst = instruments.add("2330", "TSMC", 100)
    with pytest.raises(sqlite3.IntegrityError):
        with db.transaction() as tx:
            tx.execute(
                "INSERT INTO positions VALUES (?, -1, '0', '0', '0', '2025-01-01T00:00:00.000000+00:00')",
                (inst.id,),
            )


def test_reopen_keeps_state(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.db"
    InstrumentStore(TradingDatabase(path)).add("2330", "TSMC", "99.5")
    again = InstrumentStore(TradingDatabase(path))
    assert again.get_by_symbol("2330").current_price == Decimal("99.5")


def test_timestamps_are_fixed_width_utc() -> None:
    ts = from_db_ts("2025-03-03T02:00:00+00:00")
    assert to_db_ts(ts) == "2025-03-03T02:00:00.000000+00:00"
