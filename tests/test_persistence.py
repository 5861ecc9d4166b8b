import json
from datetime import timedelta

import pytest

from riskloop.memory.in_memory_store import InMemoryPersistence, load_agents_file
from riskloop.memory.json_file_store import JsonFilePersistence
from riskloop.models import Action, Side, TradingSignal, Urgency

from fakes import NOW, make_agent, make_closed_trade, make_context, make_position, series_from, uptrend_prices


def test_signal_survives_storage_with_trade():
    context = make_context(series_from(uptrend_prices()))
    signal = TradingSignal(
        action=Action.LONG,
        confidence=0.82,
        entry_price=context.price,
        stop_loss=context.price * 0.97,
        take_profit_levels=(context.price * 1.02, context.price * 1.04),
        position_size_usd=18.5,
        leverage=4.0,
        risk_reward_ratio=1.0,
        reasoning="Uptrend continuation",
        symbol=context.symbol,
        source="ultra",
        regime=context.regime,
        indicators=context.indicators,
        urgency=Urgency.HIGH,
    )
    store = InMemoryPersistence()
    trade_id = store.record_trade(make_position(trade_id=""), signal)

    assert trade_id.startswith("trade-")
    assert store.load_trade_signal(trade_id) == signal
    assert store.load_trade_signal("unknown") is None


def test_returned_records_are_copies():
    store = InMemoryPersistence()
    store.save_agent(make_agent(symbols=["BTC/USDT"]))

    agent = store.load_agent("agent-1")
    agent.balance = 0.0
    agent.symbols.append("ETH/USDT")

    fresh = store.load_agent("agent-1")
    assert fresh.balance == 100.0
    assert fresh.symbols == ["BTC/USDT"]


def test_open_and_close_lifecycle():
    store = InMemoryPersistence()
    trade_id = store.record_trade(make_position(trade_id="t-1"))
    with pytest.raises(ValueError):
        store.record_trade(make_position(trade_id="t-1"))

    trade = store.update_trade_on_close(trade_id, 105.0, 5.0, "take profit", NOW)
    assert trade.pnl == 5.0
    assert trade.reason == "take profit"
    assert store.load_open_positions() == []
    with pytest.raises(KeyError):
        store.update_trade_on_close(trade_id, 105.0, 5.0, "again", NOW)


def test_closed_trades_newest_first_with_filters():
    store = InMemoryPersistence()
    for hours in (5, 1, 3):
        store.add_closed_trade(make_closed_trade(-1.0, closed_at=NOW - timedelta(hours=hours)))
    store.add_closed_trade(make_closed_trade(2.0, agent_id="other"))

    trades = store.load_recent_closed_trades("agent-1")
    assert [t.closed_at for t in trades] == [NOW - timedelta(hours=h) for h in (1, 3, 5)]
    assert len(store.load_recent_closed_trades("agent-1", limit=2)) == 2
    assert len(store.load_recent_closed_trades("agent-1", since=NOW - timedelta(hours=4))) == 2


def test_open_positions_filtered_by_agent():
    store = InMemoryPersistence()
    store.record_trade(make_position(trade_id="a", agent_id="agent-1"))
    store.record_trade(make_position(trade_id="b", agent_id="agent-2"))
    assert [p.trade_id for p in store.load_open_positions("agent-2")] == ["b"]
    assert len(store.load_open_positions()) == 2


def test_load_agents_file_accepts_list_or_object(tmp_path):
    store = InMemoryPersistence()
    listed = tmp_path / "agents.json"
    listed.write_text(json.dumps([{"agent_id": "a1", "name": "Alpha", "balance": 250, "symbols": ["BTC/USDT"]}]))
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"agents": [{"agent_id": "b1", "balance": 80, "uses_pooled_balance": True}]}))

    load_agents_file(str(listed), store)
    load_agents_file(str(wrapped), store)

    alpha = store.load_agent("a1")
    assert alpha.name == "Alpha"
    assert alpha.balance == 250.0
    beta = store.load_agent("b1")
    assert beta.name == "b1"
    assert beta.uses_pooled_balance
    assert beta.is_active


def test_load_agents_file_rejects_bad_content(tmp_path):
    store = InMemoryPersistence()
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    missing_id = tmp_path / "missing.json"
    missing_id.write_text(json.dumps([{"name": "nameless"}]))

    with pytest.raises(ValueError):
        load_agents_file(str(broken), store)
    with pytest.raises(ValueError):
        load_agents_file(str(missing_id), store)


def _long_signal(context):
    return TradingSignal(
        action=Action.LONG,
        confidence=0.7,
        entry_price=context.price,
        stop_loss=context.price * 0.97,
        take_profit_levels=(context.price * 1.03,),
        position_size_usd=20.0,
        leverage=5.0,
        risk_reward_ratio=1.0,
        reasoning="breakout",
        symbol=context.symbol,
        source="technical",
        regime=context.regime,
        indicators=context.indicators,
    )


def test_state_file_survives_restart(tmp_path):
    path = str(tmp_path / "state" / "riskloop.json")
    context = make_context(series_from(uptrend_prices()))
    signal = _long_signal(context)

    first = JsonFilePersistence(path)
    first.save_agent(make_agent(balance=120.0, symbols=["BTC/USDT"]))
    open_id = first.record_trade(make_position(trade_id="open-1", side=Side.SHORT, collateral_usd=15.0), signal)
    first.record_trade(make_position(trade_id="done-1"))
    first.update_trade_on_close("done-1", 95.0, -5.0, "tight stop", NOW)

    second = JsonFilePersistence(path)

    assert second.load_agent("agent-1").balance == 120.0
    [position] = second.load_open_positions("agent-1")
    assert position == make_position(trade_id="open-1", side=Side.SHORT, collateral_usd=15.0)
    [closed] = second.load_recent_closed_trades("agent-1")
    assert (closed.trade_id, closed.pnl, closed.reason, closed.closed_at) == ("done-1", -5.0, "tight stop", NOW)
    assert second.load_trade_signal(open_id) == signal
    assert not (tmp_path / "state" / "riskloop.json.tmp").exists()


def test_daily_loss_window_survives_restart(tmp_path):
    path = str(tmp_path / "state.json")
    JsonFilePersistence(path).add_closed_trade(make_closed_trade(-12.0, closed_at=NOW - timedelta(hours=3)))

    restored = JsonFilePersistence(path)
    trades = restored.load_recent_closed_trades("agent-1", since=NOW - timedelta(hours=24))
    assert [t.pnl for t in trades] == [-12.0]


def test_unreadable_state_file_is_not_overwritten(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{truncated")

    with pytest.raises(ValueError):
        JsonFilePersistence(str(path))
    assert path.read_text() == "{truncated"


def test_closed_history_is_bounded(tmp_path):
    store = JsonFilePersistence(str(tmp_path / "state.json"), max_closed_trades=2)
    for hours in (3, 2, 1):
        store.add_closed_trade(make_closed_trade(-1.0, closed_at=NOW - timedelta(hours=hours), trade_id=f"t{hours}"))

    restored = JsonFilePersistence(str(tmp_path / "state.json"))
    assert [t.trade_id for t in restored.load_recent_closed_trades("agent-1")] == ["t1", "t2"]
