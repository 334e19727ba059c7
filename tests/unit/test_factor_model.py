"""
Unit tests for the conditional factor model.

Tests:
- Input validation (shapes, minimum periods, finiteness)
- Training: loss monotonicity, degeneration to a pure empirical fit,
  explained variance with one dominant factor
- Prediction: shapes, loading blending, untrained errors
- Panel assembly from Observation records
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from quantcore import linalg
from quantcore.exceptions import DataInsufficient, ModelNotTrained
from quantcore.factors import ConditionalFactorModel, build_panel
from shared.models import Observation


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def model(factor_config):
    return ConditionalFactorModel(factor_config)


@pytest.fixture
def trained(model, dominant_factor_panel):
    returns, characteristics, timestamps, symbols = dominant_factor_panel
    model.train(returns, characteristics, timestamps, symbols)
    return model


# ============================================================================
# Validation
# ============================================================================

@pytest.mark.unit
class TestValidation:
    """Test input validation."""

    def test_invalid_num_factors(self, config):
        config["FACTOR_MODEL"]["NUM_FACTORS"] = 0
        with pytest.raises(ValueError):
            ConditionalFactorModel(config)

    @pytest.mark.parametrize("rho", [0.0, -0.1, 1.5])
    def test_invalid_blend_ratio(self, config, rho):
        config["FACTOR_MODEL"]["BLEND_RATIO"] = rho
        with pytest.raises(ValueError):
            ConditionalFactorModel(config)

    def test_too_few_periods(self, model):
        # K = 2 requires at least 3 periods
        with pytest.raises(DataInsufficient):
            model.train(np.zeros((2, 3)), np.zeros((2, 3, 4)))

    def test_time_dimension_mismatch(self, model):
        with pytest.raises(DataInsufficient):
            model.train(np.zeros((10, 3)), np.zeros((9, 3, 4)))

    def test_asset_dimension_mismatch(self, model):
        with pytest.raises(DataInsufficient):
            model.train(np.zeros((10, 3)), np.zeros((10, 4, 4)))

    def test_timestamps_mismatch(self, model):
        with pytest.raises(DataInsufficient):
            model.train(np.zeros((10, 3)), np.zeros((10, 4)), timestamps=list(range(9)))

    def test_non_finite_returns(self, model):
        returns = np.zeros((10, 3))
        returns[4, 1] = np.nan
        with pytest.raises(DataInsufficient):
            model.train(returns, np.zeros((10, 4)))

    def test_symbols_mismatch(self, model):
        with pytest.raises(DataInsufficient):
            model.train(np.zeros((10, 3)), np.zeros((10, 4)), symbols=["A", "B"])


# ============================================================================
# Training
# ============================================================================

@pytest.mark.unit
class TestTraining:
    """Test alternating least squares training."""

    def test_state_shapes(self, trained, dominant_factor_panel):
        returns, _, _, symbols = dominant_factor_panel
        state = trained.state
        T, N = returns.shape
        assert state.factors.shape == (T, 2)
        assert state.loadings.shape == (N, 2)
        assert state.beta.shape == (4, 2)
        assert state.implied_loadings.shape == (T, N, 2)
        assert state.symbols == symbols
        assert len(state.loss_history) == state.iterations

    @pytest.mark.parametrize("rho", [0.3, 0.6, 0.9])
    def test_loss_non_increasing_with_characteristics(self, factor_config, dominant_factor_panel, rho):
        factor_config["FACTOR_MODEL"]["BLEND_RATIO"] = rho
        returns, characteristics, _, _ = dominant_factor_panel
        state = ConditionalFactorModel(factor_config).train(returns, characteristics)
        losses = np.array(state.loss_history)
        assert len(losses) > 2
        assert np.all(np.diff(losses) <= 1e-8 * (1 + losses[:-1]))

    def test_final_loss_includes_characteristic_prior(self, trained, dominant_factor_panel):
        returns, _, _, _ = dominant_factor_panel
        state = trained.state
        unpenalized = (
            np.sum((returns - state.factors @ state.loadings.T) ** 2)
            + trained.gamma * np.sum(state.factors ** 2)
            + trained.lam * np.sum(state.loadings ** 2)
            + trained.lam * np.sum(state.beta ** 2)
        )
        assert state.final_loss > unpenalized

    def test_loss_non_increasing_without_characteristics(self, model, dominant_factor_panel):
        returns, characteristics, _, _ = dominant_factor_panel
        state = model.train(returns, np.zeros_like(characteristics))
        losses = np.array(state.loss_history)
        assert np.all(np.diff(losses) <= 1e-9 * (1 + losses[:-1]))

    def test_zero_characteristics_degenerate_to_empirical_fit(self, model, dominant_factor_panel):
        returns, characteristics, _, _ = dominant_factor_panel
        state = model.train(returns, np.zeros_like(characteristics))
        assert np.allclose(state.beta, 0.0)
        expected = linalg.ridge_solve(state.factors, returns, model.lam).value.T
        assert np.allclose(state.loadings, expected)

    def test_dominant_factor_explained_variance(self, trained):
        state = trained.state
        assert state.explained_variance.shape == (2,)
        assert state.explained_variance[0] > 0.6
        assert state.explained_variance.sum() == pytest.approx(1.0)

    def test_fit_quality(self, trained):
        assert trained.state.r_squared > 0.5

    def test_seeded_training_is_deterministic(self, factor_config, dominant_factor_panel):
        returns, characteristics, _, _ = dominant_factor_panel
        a = ConditionalFactorModel(factor_config, seed=11).train(returns, characteristics)
        b = ConditionalFactorModel(factor_config, seed=11).train(returns, characteristics)
        assert np.array_equal(a.factors, b.factors)
        assert a.final_loss == b.final_loss

    def test_shared_characteristics_are_broadcast(self, model, dominant_factor_panel):
        returns, characteristics, _, _ = dominant_factor_panel
        state = model.train(returns, characteristics[:, 0, :])
        assert state.implied_loadings.shape == (60, 3, 2)
        assert np.allclose(state.implied_loadings[:, 0], state.implied_loadings[:, 1])

    def test_iteration_cap_reports_not_converged(self, factor_config, dominant_factor_panel):
        factor_config["FACTOR_MODEL"]["MAX_ITERATIONS"] = 2
        factor_config["FACTOR_MODEL"]["CONVERGENCE_THRESHOLD"] = 0.0
        returns, characteristics, _, _ = dominant_factor_panel
        state = ConditionalFactorModel(factor_config).train(returns, characteristics)
        assert not state.converged
        assert state.iterations == 2

    def test_degenerate_returns_never_raise(self, model):
        state = model.train(np.zeros((10, 3)), np.zeros((10, 3, 2)))
        assert np.all(np.isfinite(state.factors))
        assert np.all(np.isfinite(state.loadings))


# ============================================================================
# Prediction
# ============================================================================

@pytest.mark.unit
class TestPrediction:
    """Test prediction and inspection."""

    def test_predict_before_training(self, model):
        with pytest.raises(ModelNotTrained):
            model.predict(np.zeros(4))

    def test_predict_shape(self, trained):
        assert trained.predict(np.zeros((3, 4))).shape == (3,)
        assert trained.predict(np.zeros(4)).shape == (3,)

    def test_predict_with_zero_characteristics_uses_trained_loadings(self, trained):
        state = trained.state
        # Zero characteristics carry no information, so the blend is skipped
        expected = state.loadings @ state.latest_factors
        assert np.allclose(trained.predict(np.zeros((3, 4))), expected)

    def test_predict_blends_implied_loadings(self, trained):
        state = trained.state
        z = np.ones((3, 4))
        rho = trained.blend_ratio
        expected = (rho * state.loadings + (1 - rho) * z @ state.beta) @ state.latest_factors
        assert np.allclose(trained.predict(z), expected)

    def test_predict_shape_mismatch(self, trained):
        with pytest.raises(DataInsufficient):
            trained.predict(np.zeros(5))
        with pytest.raises(DataInsufficient):
            trained.predict(np.zeros((2, 4)))

    def test_predict_series_indexed_by_symbol(self, trained):
        series = trained.predict_series(np.zeros(4))
        assert list(series.index) == ["AAPL", "MSFT", "GOOGL"]
        assert series.name == "expected_return"

    def test_factor_exposures(self, trained):
        assert np.array_equal(trained.factor_exposures(1), trained.state.loadings[1])
        with pytest.raises(IndexError):
            trained.factor_exposures(3)

    def test_export_state(self, trained):
        exported = trained.export_state()
        assert exported["symbols"] == ["AAPL", "MSFT", "GOOGL"]
        assert len(exported["loadings"]) == 3
        assert exported["config"]["NUM_FACTORS"] == 2

    def test_reset(self, trained):
        trained.reset()
        assert not trained.is_trained
        with pytest.raises(ModelNotTrained):
            trained.state


# ============================================================================
# Panel assembly
# ============================================================================

def _observations(periods=5, symbols=("AAPL", "MSFT")):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        Observation(
            timestamp=start + timedelta(days=t),
            symbol=symbol,
            asset_return=0.01 * t - 0.001 * i,
            characteristics=(float(t), float(i), 1.0),
        )
        for t in range(periods)
        for i, symbol in enumerate(symbols)
    ]


@pytest.mark.unit
class TestBuildPanel:
    """Test panel assembly."""

    def test_shapes_and_order(self):
        returns, characteristics, timestamps, symbols = build_panel(reversed(_observations()))
        assert returns.shape == (5, 2)
        assert characteristics.shape == (5, 2, 3)
        assert timestamps == sorted(timestamps)
        assert set(symbols) == {"AAPL", "MSFT"}

    def test_values_placed_by_period(self):
        returns, characteristics, _, symbols = build_panel(_observations())
        i = symbols.index("MSFT")
        assert returns[3, i] == pytest.approx(0.03 - 0.001)
        assert characteristics[3, i, 0] == 3.0

    def test_empty(self):
        with pytest.raises(DataInsufficient):
            build_panel([])

    def test_ragged_panel(self):
        with pytest.raises(DataInsufficient):
            build_panel(_observations()[:-1])

    def test_duplicate_observation(self):
        observations = _observations()
        with pytest.raises(DataInsufficient):
            build_panel(observations + [observations[0]])

    def test_inconsistent_characteristics(self):
        observations = _observations()
        odd = observations[0].model_copy(update={"characteristics": (1.0,)})
        with pytest.raises(DataInsufficient):
            build_panel(observations[1:] + [odd])
