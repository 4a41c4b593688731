"""Deterministic tests for the signal engine.

Each scenario builds a fixed candle window and runs ``decide()`` end to end:
indicators → size → direction → position gate → risk/reward → daily cap.
"""

from datetime import datetime, timezone

import pytest

from cprbot.risk.daily_risk import DailyRiskAccumulator
from cprbot.risk.parameters import RiskParameters
from cprbot.strategy.indicators import build_snapshot
from cprbot.strategy.models import CandleData, IndicatorSnapshot, PositionState
from cprbot.strategy.signals import (
    decide,
    evaluate_exit,
    evaluate_signal,
    is_long_setup,
    is_short_setup,
    unchecked_candles,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
EQUITY = 10_000.0


# ── Candle fixtures ──────────────────────────────────────────────────────


def _uptrend_candles(spike_high: float = 206.0) -> list[CandleData]:
    """40 bars, 10 wide, rising to a close of 166.

    The first 14 closes chop upward (9 gains of 2, 4 losses of 1) so the
    seed-window RSI is defined.  Bar 20 carries *spike_high*, which becomes
    the window resistance.
    """
    closes = [100, 102, 101, 103, 105, 104, 106, 108, 107, 109, 111, 110, 112, 114]
    closes += [114 + 2 * (i - 13) for i in range(14, 40)]
    candles = [CandleData(high=c + 5.0, low=c - 5.0, close=float(c)) for c in closes]
    candles[20] = CandleData(high=spike_high, low=closes[20] - 5.0, close=float(closes[20]))
    return candles


def _downtrend_candles() -> list[CandleData]:
    """Mirror image of ``_uptrend_candles()`` around 150."""
    return [
        CandleData(high=300.0 - c.low, low=300.0 - c.high, close=300.0 - c.close)
        for c in _uptrend_candles()
    ]


def _flat_candles() -> list[CandleData]:
    return [CandleData(high=100.0, low=100.0, close=100.0) for _ in range(40)]


def _accumulator() -> DailyRiskAccumulator:
    return DailyRiskAccumulator(daily_risk_cap=0.05, reference_equity=EQUITY, utc_now=NOW)


def _snapshot(**overrides) -> IndicatorSnapshot:
    defaults = dict(
        ema_short=105.0, ema_long=100.0, rsi=60.0, atr=10.0,
        support=90.0, resistance=130.0, cpr_top=101.0, cpr_bottom=99.0,
        bb_upper=120.0, bb_lower=80.0, price=110.0,
    )
    defaults.update(overrides)
    return IndicatorSnapshot(**defaults)


# ── Direction ────────────────────────────────────────────────────────────


class TestEvaluateSignal:
    def test_long_setup(self):
        assert evaluate_signal(_snapshot()) == "long"

    def test_short_setup(self):
        snap = _snapshot(ema_short=95.0, rsi=40.0, price=92.0, cpr_bottom=99.0)
        assert evaluate_signal(snap) == "short"

    def test_rsi_at_midline_is_no_trade(self):
        assert evaluate_signal(_snapshot(rsi=50.0)) == "no_trade"

    def test_price_inside_cpr_is_no_trade(self):
        assert evaluate_signal(_snapshot(price=100.0)) == "no_trade"

    def test_setups_are_mutually_exclusive(self):
        for snap in (_snapshot(), build_snapshot(_uptrend_candles())):
            assert not (is_long_setup(snap) and is_short_setup(snap))


# ── Scenario A: clean long / short ───────────────────────────────────────


class TestEntryScenarios:
    def test_clean_long(self):
        decision = decide(_uptrend_candles(), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)

        assert decision.signal == "long"
        assert decision.action == "enter"
        assert decision.reason == "long_setup"
        intent = decision.intent
        assert intent.direction == "long"
        # 100 risk / ATR 10 = 10 units, clamped to max lot
        assert intent.quantity == pytest.approx(0.01)
        assert intent.stop_loss == pytest.approx(151.0)
        assert intent.take_profit == pytest.approx(206.0)
        assert intent.entry_price_hint == pytest.approx(166.0)
        assert intent.stop_loss < intent.entry_price_hint < intent.take_profit

    def test_clean_short(self):
        decision = decide(_downtrend_candles(), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)

        assert decision.signal == "short"
        assert decision.action == "enter"
        intent = decision.intent
        assert intent.direction == "short"
        assert intent.stop_loss == pytest.approx(149.0)
        assert intent.take_profit == pytest.approx(94.0)
        assert intent.take_profit < intent.entry_price_hint < intent.stop_loss

    def test_deterministic(self):
        first = decide(_uptrend_candles(), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)
        second = decide(_uptrend_candles(), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)
        assert first == second


# ── Scenario B: undefined indicators ─────────────────────────────────────


class TestUndefinedIndicators:
    def test_flat_market(self):
        decision = decide(_flat_candles(), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)
        assert decision.action == "none"
        assert decision.signal == "no_trade"
        assert decision.reason == "indicator_undefined"
        assert decision.intent is None

    def test_short_history(self):
        decision = decide(_uptrend_candles()[:20], RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)
        assert decision.reason == "indicator_undefined"
        assert decision.snapshot is None

    def test_empty_history(self):
        decision = decide([], RiskParameters(), EQUITY, _accumulator(), utc_now=NOW)
        assert decision.reason == "indicator_undefined"


# ── Size gate ────────────────────────────────────────────────────────────


class TestSizeGate:
    def test_tiny_equity_rejected(self):
        # 1% of 0.05 equity = 0.0005 risk / ATR 10 → far below the min lot
        decision = decide(_uptrend_candles(), RiskParameters(), 0.05, _accumulator(), utc_now=NOW)
        assert decision.action == "none"
        assert decision.reason == "invalid_position_size"


# ── Scenario C: risk/reward too low ──────────────────────────────────────


class TestRiskRewardScenario:
    def test_nearby_resistance_caps_reward(self):
        # Resistance 184 → reward 18 vs risk 15 = 1.2
        decision = decide(
            _uptrend_candles(spike_high=184.0), RiskParameters(), EQUITY, _accumulator(), utc_now=NOW,
        )
        assert decision.signal == "long"
        assert decision.action == "none"
        assert decision.reason == "risk_reward_too_low"
        assert decision.intent is None


# ── Scenario D: daily risk cap ───────────────────────────────────────────


class TestDailyCapScenario:
    def test_cap_blocks_entry(self):
        acc = _accumulator()
        acc.record_pnl(-600.0, NOW)
        decision = decide(_uptrend_candles(), RiskParameters(), EQUITY, acc, utc_now=NOW)
        assert decision.signal == "long"
        assert decision.action == "none"
        assert decision.reason == "daily_risk_cap_exceeded"

    def test_cap_clears_next_day(self):
        acc = _accumulator()
        acc.record_pnl(-600.0, NOW)
        tomorrow = datetime(2025, 3, 11, 0, 5, tzinfo=timezone.utc)
        decision = decide(_uptrend_candles(), RiskParameters(), EQUITY, acc, utc_now=tomorrow)
        assert decision.action == "enter"


# ── Open position handling ───────────────────────────────────────────────


class TestOpenPosition:
    def test_same_direction_is_gated(self):
        pos = PositionState("long", 160.0, 0.01, 145.0, 206.0)
        decision = decide(
            _uptrend_candles(), RiskParameters(), EQUITY, _accumulator(), position=pos, utc_now=NOW,
        )
        assert decision.action == "none"
        assert decision.reason == "position_open"
        assert decision.intent is None

    def test_reversal_exits_without_entry(self):
        pos = PositionState("short", 170.0, 0.01, 185.0, 140.0)
        decision = decide(
            _uptrend_candles(), RiskParameters(), EQUITY, _accumulator(), position=pos, utc_now=NOW,
        )
        assert decision.action == "exit"
        assert decision.reason == "signal_reversal"
        assert decision.intent is None

    def test_reversal_exits_with_tiny_equity(self):
        pos = PositionState("short", 170.0, 0.01, 185.0, 140.0)
        decision = decide(
            _uptrend_candles(), RiskParameters(), 0.05, _accumulator(), position=pos, utc_now=NOW,
        )
        assert decision.action == "exit"
        assert decision.reason == "signal_reversal"


class TestEvaluateExit:
    def test_long_stop_hit(self):
        pos = PositionState("long", 100.0, 0.01, 90.0, 120.0)
        exit_ = evaluate_exit(pos, CandleData(high=101.0, low=89.0, close=95.0))
        assert exit_.reason == "stop_loss"
        assert exit_.price == pytest.approx(90.0)

    def test_long_target_hit(self):
        pos = PositionState("long", 100.0, 0.01, 90.0, 120.0)
        exit_ = evaluate_exit(pos, CandleData(high=121.0, low=110.0, close=119.0))
        assert exit_.reason == "take_profit"
        assert exit_.price == pytest.approx(120.0)

    def test_stop_wins_when_both_hit(self):
        pos = PositionState("long", 100.0, 0.01, 90.0, 120.0)
        exit_ = evaluate_exit(pos, CandleData(high=125.0, low=85.0, close=100.0))
        assert exit_.reason == "stop_loss"

    def test_short_levels(self):
        pos = PositionState("short", 100.0, 0.01, 110.0, 80.0)
        assert evaluate_exit(pos, CandleData(high=111.0, low=100.0, close=105.0)).reason == "stop_loss"
        assert evaluate_exit(pos, CandleData(high=95.0, low=79.0, close=82.0)).reason == "take_profit"

    def test_inside_range_no_exit(self):
        pos = PositionState("long", 100.0, 0.01, 90.0, 120.0)
        assert evaluate_exit(pos, CandleData(high=110.0, low=95.0, close=105.0)) is None


class TestUncheckedCandles:
    def test_includes_last_checked_bar_onward(self):
        candles = [CandleData(high=1.0, low=0.5, close=0.8, open_time=t) for t in (0, 180, 360, 540)]
        pos = PositionState("long", 1.0, 0.01, 0.5, 2.0, checked_through=360)
        assert [c.open_time for c in unchecked_candles(pos, candles)] == [360, 540]

    def test_new_position_checks_whole_window(self):
        candles = [CandleData(high=1.0, low=0.5, close=0.8, open_time=t) for t in (0, 180)]
        pos = PositionState("long", 1.0, 0.01, 0.5, 2.0)
        assert len(unchecked_candles(pos, candles)) == 2
