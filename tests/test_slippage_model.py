import pytest
import numpy as np

from snipe_engine.models.snipe_config import SlippageSettings
from snipe_engine.services.config_store import default_config
from snipe_engine.services.slippage_model import MarketConditions, SlippageModel

from .conftest import TEST_TOKENS


def test_recommended_slippage_within_bounds():
    model = SlippageModel(rng=np.random.default_rng(11))
    rng = np.random.default_rng(12)

    for _ in range(1000):
        base = float(rng.uniform(0.1, 20))
        maximum = base + float(rng.uniform(0, 30))
        calculation = model.calculate_smart_slippage(
            TEST_TOKENS["UNI"],
            base,
            maximum,
            float(rng.uniform(0, 10_000_000)),
            float(rng.uniform(0.1, 5))
        )

        assert base * 0.5 <= calculation.recommended_slippage <= maximum
        assert 0.5 <= calculation.liquidity_factor <= 2.0
        assert 0.5 <= calculation.volatility_factor <= 3.0
        assert 0.6 <= calculation.confidence < 1.0


def test_factors_from_market_conditions():
    model = SlippageModel(
        conditions_provider=lambda token: MarketConditions(
            liquidity=1_000_000,
            volatility=30,
            volume_24h=600_000,
        ),
        rng=np.random.default_rng(0)
    )

    calculation = model.calculate_smart_slippage(TEST_TOKENS["UNI"], 2.0, 50.0, 500_000, 1.0)

    assert calculation.liquidity_factor == pytest.approx(0.5)
    assert calculation.volatility_factor == pytest.approx(1.5)
    # 2 * 0.5 * 1.5 * 1.2 * 1.0
    assert calculation.adjusted_slippage == pytest.approx(1.8)
    assert calculation.recommended_slippage == pytest.approx(1.8)


def test_recommendation_clamped_to_max():
    model = SlippageModel(
        conditions_provider=lambda token: MarketConditions(liquidity=10_000, volatility=55, volume_24h=1_000_000),
    )

    calculation = model.calculate_smart_slippage(TEST_TOKENS["UNI"], 10.0, 25.0, 1_000_000, 5.0)

    assert calculation.adjusted_slippage > 25.0
    assert calculation.recommended_slippage == 25.0


def test_recommendation_floored_at_half_base():
    model = SlippageModel(
        conditions_provider=lambda token: MarketConditions(liquidity=5_000_000, volatility=5, volume_24h=10_000),
    )

    calculation = model.calculate_smart_slippage(TEST_TOKENS["UNI"], 10.0, 25.0, 0, 0.1)

    assert calculation.recommended_slippage == 5.0


def test_fixed_mode_uses_configured_slippage():
    model = SlippageModel()
    config = default_config(TEST_TOKENS["UNI"], slippage=7.5)

    calculation = model.for_config(config)

    assert calculation.recommended_slippage == 7.5
    assert model.get(TEST_TOKENS["UNI"]) is calculation


def test_adaptive_mode_uses_slippage_settings():
    model = SlippageModel(
        conditions_provider=lambda token: MarketConditions(liquidity=1_000_000, volatility=20, volume_24h=500_000),
    )
    config = default_config(
        TEST_TOKENS["UNI"],
        slippage_settings=SlippageSettings(
            mode="adaptive",
            base_slippage=4.0,
            max_slippage=20.0,
            liquidity_threshold=1_000_000,
            volatility_multiplier=2.0,
        )
    )

    calculation = model.for_config(config)

    # 4 * 1 * 1 * 1 * 2
    assert calculation.recommended_slippage == pytest.approx(8.0)
