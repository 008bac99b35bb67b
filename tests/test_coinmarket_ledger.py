"""Tests for the TradingLedger and mark-to-market valuation.

Invariant families
------------------
1. **Worked scenarios**: buy, sell at a higher price, invalid quantity,
   insufficient funds, sell without a position.
2. **Cash conservation**: cash + cost basis of open positions + realized PnL
   always reconciles to starting cash.
3. **Weighted average cost**: each buy recomputes the average; a full sell
   leaves a flat tombstone that the next buy re-opens from zero.
4. **Publication**: wallet/portfolio/combined streams publish once per
   committed trade, after commit, from one consistent state.  Rejections and
   holds publish nothing.
5. **Concurrency**: concurrent buys never overspend and concurrent sells
   never over-draw a position.
"""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from packages.coinmarket.market.assets import Asset, PriceSnapshot, RiskCategory
from packages.coinmarket.portfolio.ledger import TradingLedger, coerce_quantity
from packages.coinmarket.portfolio.positions import Position, TradeAction, TradeError
from packages.coinmarket.portfolio.valuation import value_portfolio

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

_D = Decimal  # shorthand


class _Prices:
    """Mutable stand-in for the PriceSimulator's pull interface."""

    def __init__(self, **prices: str) -> None:
        self.seq = 0
        self._prices = {k: _D(v) for k, v in prices.items()}

    def set(self, asset_id: str, price: str) -> None:
        self.seq += 1
        self._prices[asset_id] = _D(price)

    def remove(self, asset_id: str) -> None:
        self.seq += 1
        self._prices.pop(asset_id, None)

    def get_snapshot(self) -> PriceSnapshot:
        return PriceSnapshot(
            seq=self.seq,
            assets=tuple(
                Asset(aid, aid, RiskCategory.LOW_RISK, p) for aid, p in self._prices.items()
            ),
        )


def _ledger(cash: str = "1000", **prices: str) -> tuple[TradingLedger, _Prices]:
    source = _Prices(**(prices or {"X": "100"}))
    return TradingLedger(source, starting_cash=_D(cash)), source


def _conserved(ledger: TradingLedger) -> Decimal:
    """cash + open cost basis - realized PnL; must equal starting cash."""
    snap = ledger.snapshot()
    basis = sum((p.cost_basis for p in snap.positions), _D("0"))
    return snap.cash + basis - snap.realized_pnl


# ===========================================================================
# Worked scenarios
# ===========================================================================


class TestScenarios:
    def test_a_buy(self):
        ledger, _ = _ledger("1000.00", X="100.00")
        ok, error = ledger.buy("X", 5)
        assert ok is True
        assert error is None
        assert ledger.get_wallet_balance() == _D("500.00")
        assert ledger.get_position("X") == Position("X", _D("5"), _D("100.00"))

    def test_b_sell_after_price_rise(self):
        ledger, prices = _ledger("1000.00", X="100.00")
        ledger.buy("X", 5)
        prices.set("X", "110.00")
        ok, error = ledger.sell("X", 5)
        assert ok is True
        assert error is None
        assert ledger.get_wallet_balance() == _D("1050.00")
        pos = ledger.get_position("X")
        assert pos.quantity == 0
        assert pos.avg_cost == 0
        assert ledger.realized_pnl == _D("50.00")

    def test_c_negative_quantity(self):
        ledger, _ = _ledger("1000.00", X="100.00")
        ok, error = ledger.buy("X", -1)
        assert ok is False
        assert error == TradeError.INVALID_QUANTITY
        assert ledger.get_wallet_balance() == _D("1000.00")
        assert ledger.get_portfolio() == []

    def test_d_insufficient_funds(self):
        ledger, _ = _ledger("100.00", X="100.00")
        ok, error = ledger.buy("X", 2)
        assert ok is False
        assert error == TradeError.INSUFFICIENT_FUNDS
        assert ledger.get_wallet_balance() == _D("100.00")

    def test_e_sell_without_position(self):
        ledger, _ = _ledger("1000.00", X="100.00", Y="5")
        ok, error = ledger.sell("Y", 1)
        assert ok is False
        assert error == TradeError.NO_POSITION


# ===========================================================================
# Validation
# ===========================================================================


class TestValidation:
    @pytest.mark.parametrize("qty", [0, "0", -1, "abc", None, True, float("nan"), "Infinity"])
    def test_bad_quantity_rejected(self, qty):
        ledger, _ = _ledger()
        result = ledger.buy("X", qty)
        assert result.error == TradeError.INVALID_QUANTITY
        assert ledger.get_wallet_balance() == _D("1000")

    def test_unknown_asset_rejected(self):
        ledger, _ = _ledger()
        assert ledger.buy("NOPE", 1).error == TradeError.INVALID_ASSET

    def test_quantity_checked_before_asset(self):
        ledger, _ = _ledger()
        assert ledger.buy("NOPE", 0).error == TradeError.INVALID_QUANTITY

    def test_exact_cash_buy_allowed(self):
        ledger, _ = _ledger("100", X="100")
        assert ledger.buy("X", 1).ok
        assert ledger.get_wallet_balance() == 0

    def test_fractional_quantity(self):
        ledger, _ = _ledger("1000", X="100")
        assert ledger.buy("X", "0.5").ok
        assert ledger.get_wallet_balance() == _D("950.0")

    def test_float_quantity_converted_via_str(self):
        assert coerce_quantity(0.1) == _D("0.1")

    def test_sell_more_than_held(self):
        ledger, _ = _ledger()
        ledger.buy("X", 2)
        result = ledger.sell("X", 3)
        assert result.error == TradeError.INSUFFICIENT_QUANTITY
        assert ledger.get_position("X").quantity == _D("2")

    def test_sell_from_flat_tombstone_is_no_position(self):
        ledger, _ = _ledger()
        ledger.buy("X", 1)
        ledger.sell("X", 1)
        assert ledger.sell("X", 1).error == TradeError.NO_POSITION

    def test_sell_vanished_asset_is_invalid_asset(self):
        ledger, prices = _ledger()
        ledger.buy("X", 1)
        prices.remove("X")
        result = ledger.sell("X", 1)
        assert result.error == TradeError.INVALID_ASSET
        assert ledger.get_position("X").quantity == _D("1")

    def test_rejection_message(self):
        ledger, _ = _ledger("1", X="100")
        result = ledger.buy("X", 1)
        assert not result
        assert result.message == "Insufficient cash"

    def test_negative_starting_cash_rejected(self):
        with pytest.raises(ValueError):
            TradingLedger(_Prices(X="1"), starting_cash=_D("-1"))

    def test_unparseable_starting_cash_rejected(self):
        with pytest.raises(ValueError, match="starting_cash"):
            TradingLedger(_Prices(X="1"), starting_cash="abc")

    def test_overflowing_cost_is_insufficient_funds(self):
        ledger, _ = _ledger("1000", X="100")
        result = ledger.buy("X", "9e999999")
        assert result.error == TradeError.INSUFFICIENT_FUNDS
        assert ledger.get_wallet_balance() == _D("1000")
        assert ledger.get_portfolio() == []


# ===========================================================================
# Weighted average cost and flat rows
# ===========================================================================


class TestCostBasis:
    def test_weighted_average_over_two_buys(self):
        ledger, prices = _ledger("10000", X="100")
        ledger.buy("X", 5)
        prices.set("X", "130")
        ledger.buy("X", 10)
        pos = ledger.get_position("X")
        assert pos.quantity == _D("15")
        assert pos.avg_cost == _D("120")

    def test_partial_sell_keeps_average(self):
        ledger, prices = _ledger("10000", X="100")
        ledger.buy("X", 10)
        prices.set("X", "150")
        ledger.sell("X", 4)
        pos = ledger.get_position("X")
        assert pos.quantity == _D("6")
        assert pos.avg_cost == _D("100")
        assert ledger.realized_pnl == _D("200")

    def test_flat_row_retained_and_reopened_from_zero(self):
        ledger, prices = _ledger("10000", X="100")
        ledger.buy("X", 2)
        ledger.sell("X", 2)
        assert ledger.get_portfolio() == [Position("X")]
        assert ledger.get_position("X").is_flat

        prices.set("X", "40")
        ledger.buy("X", 1)
        assert ledger.get_position("X") == Position("X", _D("1"), _D("40"))

    def test_portfolio_keeps_insertion_order(self):
        ledger, _ = _ledger("10000", B="1", A="1", C="1")
        for aid in ("C", "A", "B"):
            ledger.buy(aid, 1)
        assert [p.asset_id for p in ledger.get_portfolio()] == ["C", "A", "B"]


class TestCashConservation:
    def test_conserved_across_mixed_sequence(self):
        ledger, prices = _ledger("1000", X="100", Y="2")
        steps = [
            ("buy", "X", 3), ("buy", "Y", 50), ("price", "X", "120"),
            ("sell", "X", 1), ("buy", "X", 2), ("price", "Y", "1.5"),
            ("sell", "Y", 50), ("buy", "Y", 999999), ("sell", "X", 4),
        ]
        for kind, aid, arg in steps:
            if kind == "price":
                prices.set(aid, arg)
            elif kind == "buy":
                ledger.buy(aid, arg)
            else:
                ledger.sell(aid, arg)
            assert _conserved(ledger) == _D("1000")
            assert ledger.get_wallet_balance() >= 0


# ===========================================================================
# Publication
# ===========================================================================


class TestPublication:
    def test_initial_state_published_at_construction(self):
        ledger, _ = _ledger()
        assert ledger.wallet.last() == _D("1000")
        assert ledger.portfolio.last() == ()
        assert ledger.updates.last().version == 0

    def test_successful_trade_publishes_each_stream_once(self):
        ledger, _ = _ledger()
        events = []
        ledger.wallet.subscribe(lambda v: events.append(("wallet", v)))
        ledger.portfolio.subscribe(lambda v: events.append(("portfolio", v)))
        ledger.updates.subscribe(lambda v: events.append(("ledger", v.version)))

        ledger.buy("X", 2)

        assert events == [
            ("wallet", _D("800")),
            ("portfolio", (Position("X", _D("2"), _D("100")),)),
            ("ledger", 1),
        ]

    def test_rejections_and_holds_publish_nothing(self):
        ledger, _ = _ledger()
        events = []
        ledger.wallet.subscribe(events.append)
        ledger.portfolio.subscribe(events.append)
        ledger.buy("X", 0)
        ledger.sell("X", 1)
        ledger.hold("X")
        assert events == []

    def test_published_after_commit(self):
        ledger, _ = _ledger()
        seen = []
        ledger.wallet.subscribe(lambda cash: seen.append((cash, ledger.get_wallet_balance())))
        ledger.buy("X", 1)
        assert seen == [(_D("900"), _D("900"))]

    def test_wallet_handler_sees_matching_portfolio(self):
        ledger, _ = _ledger()
        seen = []
        ledger.wallet.subscribe(
            lambda cash: seen.append(
                (cash, ledger.portfolio.last(), ledger.updates.last().version)
            )
        )
        ledger.buy("X", 2)
        assert seen == [(_D("800"), (Position("X", _D("2"), _D("100")),), 1)]

    def test_reentrant_trade_leaves_newest_last_values(self):
        ledger, _ = _ledger()

        def follow_up(cash):
            if cash == _D("900"):
                ledger.buy("X", 1)

        ledger.wallet.subscribe(follow_up)
        ledger.buy("X", 1)
        assert ledger.wallet.last() == _D("800")
        assert ledger.portfolio.last() == (Position("X", _D("2"), _D("100")),)
        assert ledger.updates.last().version == 2

    def test_subscriber_fault_does_not_roll_back(self):
        ledger, _ = _ledger()
        ledger.wallet.subscribe(lambda v: 1 / 0)
        assert ledger.buy("X", 1).ok
        assert ledger.get_wallet_balance() == _D("900")
        assert ledger.portfolio.last() == (Position("X", _D("1"), _D("100")),)

    def test_subscriber_may_trade_reentrantly(self):
        ledger, _ = _ledger()
        fired = []

        def follow_up(snapshot):
            if snapshot.version == 1:
                fired.append(ledger.buy("X", 1).ok)

        ledger.updates.subscribe(follow_up)
        ledger.buy("X", 1)
        assert fired == [True]
        assert ledger.get_position("X").quantity == _D("2")

    def test_combined_snapshot_consistent(self):
        ledger, _ = _ledger()
        ledger.buy("X", 3)
        snap = ledger.updates.last()
        assert snap.cash == ledger.wallet.last()
        assert snap.positions == ledger.portfolio.last()
        assert snap.position("X").quantity == _D("3")


# ===========================================================================
# Hold and journal
# ===========================================================================


class TestHoldAndJournal:
    def test_hold_is_ok_and_changes_nothing(self):
        ledger, _ = _ledger()
        before = ledger.snapshot()
        result = ledger.hold("X")
        assert result.ok
        assert result.action == TradeAction.HOLD
        assert ledger.snapshot() == before

    def test_journal_records_every_action(self):
        ledger, _ = _ledger()
        ledger.buy("X", 1)
        ledger.buy("X", -1)
        ledger.hold()
        ledger.sell("X", 1)
        rows = ledger.journal()
        assert [(r.action, r.ok, r.error) for r in rows] == [
            ("buy", True, None),
            ("buy", False, TradeError.INVALID_QUANTITY),
            ("hold", True, None),
            ("sell", True, None),
        ]
        assert [r.seq for r in rows] == [1, 2, 3, 4]
        assert rows[-1].cash_after == _D("1000")

    def test_journal_capacity(self):
        ledger = TradingLedger(_Prices(X="1"), journal_capacity=2)
        for _ in range(5):
            ledger.hold()
        assert [r.seq for r in ledger.journal()] == [4, 5]


# ===========================================================================
# Concurrency
# ===========================================================================


class TestConcurrency:
    def test_concurrent_buys_never_overspend(self):
        ledger, _ = _ledger("1000", X="100")
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(20)

        def worker():
            barrier.wait()
            r = ledger.buy("X", 1)
            with lock:
                results.append(r.ok)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 10
        assert ledger.get_wallet_balance() == 0
        assert ledger.get_position("X").quantity == _D("10")

    def test_concurrent_sells_never_overdraw(self):
        ledger, _ = _ledger("1000", X="100")
        ledger.buy("X", 5)
        barrier = threading.Barrier(12)
        oks = []

        def worker():
            barrier.wait()
            oks.append(ledger.sell("X", 1).ok)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert oks.count(True) == 5
        assert ledger.get_position("X").is_flat
        assert ledger.get_wallet_balance() == _D("1000")

    def test_publications_follow_commit_order(self):
        ledger, _ = _ledger("100000", X="1")
        versions = []
        ledger.updates.subscribe(lambda s: versions.append(s.version))

        threads = [
            threading.Thread(target=lambda: [ledger.buy("X", 1) for _ in range(25)])
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert versions == list(range(1, 101))


# ===========================================================================
# Valuation
# ===========================================================================


class TestValuation:
    def test_mark_to_market(self):
        ledger, prices = _ledger("1000", X="100", Y="10")
        ledger.buy("X", 2)
        ledger.buy("Y", 10)
        prices.set("X", "150")
        prices.set("Y", "5")

        v = value_portfolio(ledger.snapshot(), prices.get_snapshot())

        assert v.cash == _D("700")
        assert v.position_value == _D("350")
        assert v.unrealized_pnl == _D("50")
        assert v.equity == _D("1050")
        assert v.price_seq == prices.seq
        assert v.ledger_version == 2

    def test_missing_price_contributes_nothing(self):
        ledger, prices = _ledger("1000", X="100")
        ledger.buy("X", 1)
        prices.remove("X")
        v = value_portfolio(ledger.snapshot(), prices.get_snapshot())
        assert v.positions[0].mark_price is None
        assert v.position_value == 0
        assert v.equity == _D("900")

    def test_to_dict_is_json_safe(self):
        ledger, prices = _ledger()
        ledger.buy("X", 1)
        d = value_portfolio(ledger.snapshot(), prices.get_snapshot()).to_dict()
        assert d["equity"] == "1000"
        assert d["positions"][0]["mark_price"] == "100"
