import pytest

from snipe_engine.core.engine import SnipeEngine
from snipe_engine.exceptions import ProviderUnavailableError
from snipe_engine.models.snipe_config import AutoSellSettings, GasSettings
from snipe_engine.models.trading import QueueItemStatus, TradeType, TransactionStatus
from snipe_engine.services.broadcaster import SimulatedBroadcaster

from .conftest import TEST_TOKENS, ScriptedBroadcaster

UNI = TEST_TOKENS["UNI"]


class UnavailableBroadcaster(ScriptedBroadcaster):
    async def ensure_ready(self):
        raise ProviderUnavailableError("no provider configured")


def add_enabled(engine, config):
    config_id = engine.configs.add(config)
    engine.configs.enable(config_id, acknowledged=True)
    return config_id


async def buy_at(engine, oracle, price):
    """Tick at ``price`` and execute the queued buy."""
    oracle.prices[UNI] = price
    await engine.tick()
    await engine.processor.process_queue()


@pytest.mark.asyncio
async def test_tick_refreshes_market_without_trading(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    add_enabled(engine, valid_config)

    data = await engine.tick()

    assert data[UNI].price == 0.0009
    assert len(engine.queue) == 0
    assert engine.open_positions() == []


@pytest.mark.asyncio
async def test_price_at_target_queues_buy(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    config_id = add_enabled(engine, valid_config)
    engine.start_bot()

    await engine.tick()

    [item] = engine.queue.items()
    assert item.type == TradeType.BUY
    assert item.snipe_config_id == config_id
    assert item.amount == valid_config.amount
    assert item.max_retries == valid_config.gas_settings.retry_count
    assert item.timeout == valid_config.gas_settings.execution_timeout
    assert engine.has_trade_in_flight(config_id)
    # Nothing is held until the buy executes
    assert engine.open_positions() == []
    assert engine.ledger.transactions()[0].status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_confirmed_buy_opens_position(engine, valid_config, oracle, broadcaster):
    config_id = add_enabled(engine, valid_config)
    engine.start_bot()

    await buy_at(engine, oracle, 0.0009)

    [item] = engine.queue.items()
    assert item.status == QueueItemStatus.CONFIRMED
    assert broadcaster.requests[0].to == UNI
    assert engine.positions[config_id].entry_price == 0.0009
    assert not engine.has_trade_in_flight(config_id)

    record = engine.ledger.transactions()[0]
    assert record.type == TradeType.BUY
    assert record.status == TransactionStatus.SUCCESS
    assert record.hash == item.tx_hash


@pytest.mark.asyncio
async def test_exhausted_buy_is_failed_in_history(engine, valid_config, oracle, broadcaster):
    broadcaster.default = False
    config = valid_config.model_copy(update={"gas_settings": GasSettings(retry_count=1)})
    config_id = add_enabled(engine, config)
    engine.start_bot()

    await buy_at(engine, oracle, 0.001)
    await engine.processor.process_queue()

    [item] = engine.queue.items()
    assert item.status == QueueItemStatus.FAILED
    assert item.is_terminal

    record = engine.ledger.transactions()[0]
    assert record.status == TransactionStatus.FAILED
    assert record.error == "scripted failure"
    assert record.retries == 1
    assert config_id not in engine.positions
    assert engine.status().success_rate == 0.0


@pytest.mark.asyncio
async def test_buy_retried_after_failure_then_confirmed(engine, valid_config, oracle, broadcaster):
    broadcaster.outcomes = [False]
    config_id = add_enabled(engine, valid_config)
    engine.start_bot()

    await buy_at(engine, oracle, 0.0009)
    assert engine.ledger.transactions()[0].status == TransactionStatus.PENDING
    assert config_id not in engine.positions

    await engine.processor.process_queue()

    assert engine.ledger.transactions()[0].status == TransactionStatus.SUCCESS
    assert config_id in engine.positions


@pytest.mark.asyncio
async def test_price_above_target_does_not_snipe(engine, valid_config):
    add_enabled(engine, valid_config)
    engine.start_bot()

    # Oracle price 0.0011 is above the 0.001 target
    await engine.tick()

    assert len(engine.queue) == 0


@pytest.mark.asyncio
async def test_disabled_config_does_not_snipe(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    engine.configs.add(valid_config)
    engine.start_bot()

    await engine.tick()

    assert len(engine.queue) == 0


@pytest.mark.asyncio
async def test_no_second_buy_while_first_in_flight_or_held(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    add_enabled(engine, valid_config)
    engine.start_bot()

    await engine.tick()
    await engine.tick()
    assert len(engine.queue) == 1

    await engine.processor.process_queue()
    await engine.tick()
    assert len(engine.queue) == 1


@pytest.mark.asyncio
async def test_take_profit_sells_and_closes(engine, valid_config, oracle):
    config = valid_config.model_copy(update={"auto_sell": AutoSellSettings(enabled=True)})
    config_id = add_enabled(engine, config)
    engine.start_bot()
    await buy_at(engine, oracle, 0.0009)

    oracle.prices[UNI] = 0.0009 * 1.6
    await engine.tick()

    sells = [item for item in engine.queue.items() if item.type == TradeType.SELL]
    assert len(sells) == 1
    assert sells[0].amount == pytest.approx(valid_config.amount)
    # Still held until the sell executes
    assert config_id in engine.positions

    await engine.processor.process_queue()

    assert config_id not in engine.positions
    sell_record = engine.ledger.transactions()[0]
    assert sell_record.type == TradeType.SELL
    assert sell_record.status == TransactionStatus.SUCCESS
    assert sell_record.profit == pytest.approx(valid_config.amount * 0.6)


@pytest.mark.asyncio
async def test_partial_sell_reduces_position(engine, valid_config, oracle):
    auto_sell = AutoSellSettings(
        enabled=True,
        partial_selling={"enabled": True, "percentages": [25], "price_targets": [20]},
    )
    config_id = add_enabled(engine, valid_config.model_copy(update={"auto_sell": auto_sell}))
    engine.start_bot()
    await buy_at(engine, oracle, 0.001)

    oracle.prices[UNI] = 0.00125
    await engine.tick()
    await engine.processor.process_queue()

    position = engine.positions[config_id]
    assert position.remaining == pytest.approx(valid_config.amount * 0.75)
    assert position.fired_targets == [20]


@pytest.mark.asyncio
async def test_failed_partial_sell_keeps_position_and_target(engine, valid_config, oracle, broadcaster):
    auto_sell = AutoSellSettings(
        enabled=True,
        partial_selling={"enabled": True, "percentages": [25], "price_targets": [20]},
    )
    config = valid_config.model_copy(update={
        "auto_sell": auto_sell,
        "gas_settings": GasSettings(retry_count=0),
    })
    config_id = add_enabled(engine, config)
    engine.start_bot()
    await buy_at(engine, oracle, 0.001)

    broadcaster.outcomes = [False]
    oracle.prices[UNI] = 0.00125
    await engine.tick()
    await engine.processor.process_queue()

    position = engine.positions[config_id]
    assert position.remaining == pytest.approx(valid_config.amount)
    assert position.fired_targets == []
    assert engine.ledger.transactions()[0].status == TransactionStatus.FAILED

    # The target can fire again
    await engine.tick()
    await engine.processor.process_queue()
    assert engine.positions[config_id].remaining == pytest.approx(valid_config.amount * 0.75)


@pytest.mark.asyncio
async def test_cancelled_buy_is_failed_in_history(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    config_id = add_enabled(engine, valid_config)
    engine.start_bot()
    await engine.tick()
    [item] = engine.queue.items()

    assert engine.queue.cancel(item.id)
    oracle.prices[UNI] = 0.0011
    await engine.tick()

    record = engine.ledger.transactions()[0]
    assert record.status == TransactionStatus.FAILED
    assert record.error == "removed from queue"
    assert not engine.has_trade_in_flight(config_id)


@pytest.mark.asyncio
async def test_buy_skipped_when_gas_exceeds_cap(engine, valid_config, oracle):
    oracle.prices[UNI] = 0.0009
    config = valid_config.model_copy(update={"gas_settings": GasSettings(max_gas_price=1)})
    config_id = add_enabled(engine, config)
    engine.start_bot()

    await engine.tick()

    assert len(engine.queue) == 0
    assert config_id not in engine.positions


@pytest.mark.asyncio
async def test_removing_config_drops_position(engine, valid_config, oracle):
    config_id = add_enabled(engine, valid_config)
    engine.start_bot()
    await buy_at(engine, oracle, 0.0009)
    assert config_id in engine.positions

    engine.configs.remove(config_id)

    assert engine.open_positions() == []
    assert engine.market.get(UNI) is None


@pytest.mark.asyncio
async def test_simulated_market_uses_engine_clock(fast_settings, broadcaster, clock, valid_config):
    engine = SnipeEngine(fast_settings, broadcaster=broadcaster, clock=clock)
    engine.configs.add(valid_config)

    data = await engine.tick()

    assert data[UNI].timestamp == pytest.approx(clock.now, abs=1)


@pytest.mark.asyncio
async def test_status(engine, valid_config, clock):
    add_enabled(engine, valid_config)
    assert engine.status().uptime == 0.0

    engine.start_bot()
    clock.advance(60)
    status = engine.status()

    assert status.is_running
    assert status.active_snipes == 1
    assert status.uptime >= 60
    assert set(status.gas_estimator) == {
        "current_base_fee", "recommended_gas_price", "fast_gas_price", "network_congestion"
    }
    assert status.transaction_queue["next_nonce"] == 0

    engine.stop_bot()
    assert not engine.status().is_running


@pytest.mark.asyncio
async def test_demo_data(engine):
    config_id = engine.add_demo_data()

    assert engine.configs.get(config_id).enabled
    assert engine.status().total_transactions == 2


@pytest.mark.asyncio
async def test_unavailable_provider_falls_back_to_practice_mode(fast_settings, oracle):
    engine = SnipeEngine(fast_settings, oracle=oracle, broadcaster=UnavailableBroadcaster())
    assert not engine.practice_mode

    await engine.start()
    try:
        assert engine.practice_mode
        assert isinstance(engine.processor.broadcaster, SimulatedBroadcaster)
    finally:
        await engine.shutdown()
