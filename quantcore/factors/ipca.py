"""
Conditional Factor Model
========================

Instrumented-PCA style factor model: asset loadings on K latent factors are
conditioned on observable characteristics through a map ``beta`` (L x K),
so loadings vary over time as characteristics change.

Model:
------
    R (T x N) ≈ F (T x K) · Λ' (K x N)
    P_t       = Z_t (N x L) · beta (L x K)      (characteristic-implied loadings)

Objective:
----------
    J = ||R - FΛ'||² + γ||F||² + λ||Λ||² + λ||beta||²
        + μ · mean_t tr((Λ - P_t) A (Λ - P_t)'),   A = F'F + λI,  μ = (1 - ρ) / ρ

The last term is the characteristic prior. Its metric A makes the blended
loading update below the exact minimizer of J in Λ, so every step of the
alternating scheme lowers J. μ = 0 when the characteristics are all zero.

Training (ridge-regularized alternating least squares):
-------------------------------------------------------
1. Random initialization of F, Λ, beta (seeded)
2. Characteristic-implied loadings P_t = Z_t · beta and their mean P̄
3. F = R Λ (Λ'Λ + μS + γI)^-1,  S = mean_t (Λ - P_t)'(Λ - P_t)
4. Λ = ρ · R'F (F'F + λI)^-1 + (1 - ρ) · P̄
5. beta = ridge regression of Λ on the stacked characteristics, one
   regression per eigenvector of A
6. Stop on |ΔJ| < threshold or at the iteration cap

Any singular system keeps the previous iterate and is logged as a
NumericalInstability; training never raises for numerical reasons.

Example:
--------
    from quantcore.factors import ConditionalFactorModel

    model = ConditionalFactorModel(config)
    state = model.train(returns, characteristics, timestamps, symbols)
    expected = model.predict(latest_characteristics)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import logging

import numpy as np
import pandas as pd

from quantcore import linalg
from quantcore.exceptions import DataInsufficient, ModelNotTrained

logger = logging.getLogger(__name__)


@dataclass
class FactorModelState:
    """
    Trained factor model parameters and convergence metadata.

    Rebuilt wholesale on every training run.
    """

    factors: np.ndarray                 # T x K
    loadings: np.ndarray                # N x K
    beta: np.ndarray                    # L x K
    implied_loadings: np.ndarray        # T x N x K
    timestamps: List[Any]
    symbols: List[str]
    iterations: int
    converged: bool
    final_loss: float
    loss_history: List[float] = field(default_factory=list)
    instability_count: int = 0
    eigenvalues: np.ndarray = field(default_factory=lambda: np.zeros(0))
    explained_variance: np.ndarray = field(default_factory=lambda: np.zeros(0))
    r_squared: float = 0.0

    @property
    def num_periods(self) -> int:
        return self.factors.shape[0]

    @property
    def num_assets(self) -> int:
        return self.loadings.shape[0]

    @property
    def num_factors(self) -> int:
        return self.factors.shape[1]

    @property
    def num_characteristics(self) -> int:
        return self.beta.shape[0]

    @property
    def latest_factors(self) -> np.ndarray:
        """Most recent factor realization (K,)."""
        return self.factors[-1]


class ConditionalFactorModel:
    """
    Conditional factor model trained by alternating least squares.

    Attributes:
        num_factors: Number of latent factors K
        gamma: Ridge term on the factor Gram matrix
        lam: Ridge term on loadings and beta
        blend_ratio: Weight of empirical loadings vs characteristic-implied loadings
        max_iterations: Iteration cap
        convergence_threshold: Stop when |Δloss| falls below this
        init_scale: Scale of the random initialization
        seed: Seed for the initialization RNG
    """

    def __init__(self, config: Optional[Dict] = None, seed: Optional[int] = None):
        """Initialize factor model."""
        config = config or {}
        model_config = config.get("FACTOR_MODEL", {})

        self.num_factors = int(model_config.get("NUM_FACTORS", 5))
        self.gamma = float(model_config.get("GAMMA", 0.01))
        self.lam = float(model_config.get("LAMBDA", 0.001))
        self.blend_ratio = float(model_config.get("BLEND_RATIO", 0.6))
        self.max_iterations = int(model_config.get("MAX_ITERATIONS", 1000))
        self.convergence_threshold = float(model_config.get("CONVERGENCE_THRESHOLD", 1e-6))
        self.init_scale = float(model_config.get("INIT_SCALE", 0.1))
        self.seed = seed if seed is not None else config.get("SEED")

        if self.num_factors < 1:
            raise ValueError(f"NUM_FACTORS must be >= 1, got {self.num_factors}")
        if not 0.0 < self.blend_ratio <= 1.0:
            raise ValueError(f"BLEND_RATIO must be in (0, 1], got {self.blend_ratio}")

        self._state: Optional[FactorModelState] = None

    @property
    def is_trained(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> FactorModelState:
        if self._state is None:
            raise ModelNotTrained("Model must be trained before accessing its state")
        return self._state

    def reset(self) -> None:
        """Drop the trained state."""
        self._state = None

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    def _prepare_inputs(self, returns, characteristics, timestamps) -> tuple:
        R = np.asarray(returns, dtype=float)
        if R.ndim != 2 or R.size == 0:
            raise DataInsufficient(f"returns must be a non-empty T x N matrix, got shape {R.shape}")
        T, N = R.shape

        Z = np.asarray(characteristics, dtype=float)
        if Z.ndim not in (2, 3):
            raise DataInsufficient(
                f"characteristics must be T x L or T x N x L, got shape {Z.shape}"
            )
        if Z.shape[0] != T:
            raise DataInsufficient(
                f"returns and characteristics must share the time dimension ({T} != {Z.shape[0]})"
            )
        if Z.ndim == 2:
            # One characteristic vector per period, shared by every asset
            Z = np.repeat(Z[:, np.newaxis, :], N, axis=1)
        elif Z.shape[1] != N:
            raise DataInsufficient(
                f"characteristics cover {Z.shape[1]} assets but returns cover {N}"
            )
        if Z.shape[2] == 0:
            raise DataInsufficient("characteristics must have at least one feature")

        if timestamps is not None and len(timestamps) != T:
            raise DataInsufficient(
                f"timestamps must match the returns time dimension ({len(timestamps)} != {T})"
            )
        if T < self.num_factors + 1:
            raise DataInsufficient(
                f"Need at least {self.num_factors + 1} periods for {self.num_factors} factors, got {T}"
            )
        if not (linalg.is_valid(R) and linalg.is_valid(Z)):
            raise DataInsufficient("returns and characteristics must be finite")

        return R, Z

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    @property
    def prior_weight(self) -> float:
        """μ = (1 - ρ) / ρ, weight of the characteristic prior in the objective."""
        return (1.0 - self.blend_ratio) / self.blend_ratio

    def _loss(
        self,
        R: np.ndarray,
        Z: np.ndarray,
        F: np.ndarray,
        Lam: np.ndarray,
        beta: np.ndarray,
        mu: float,
    ) -> float:
        residual = R - F @ Lam.T
        loss = (
            np.sum(residual ** 2)
            + self.gamma * np.sum(F ** 2)
            + self.lam * np.sum(Lam ** 2)
            + self.lam * np.sum(beta ** 2)
        )
        if mu > 0:
            D = Lam[np.newaxis] - Z @ beta
            A = F.T @ F + self.lam * np.eye(F.shape[1])
            loss += mu * np.einsum("tnk,kj,tnj->", D, A, D) / Z.shape[0]
        return float(loss)

    def _factor_step(self, R, Z, Lam, beta, mu) -> linalg.LinAlgResult:
        """F = R Λ (Λ'Λ + μS + γI)^-1."""
        K = Lam.shape[1]
        gram = Lam.T @ Lam + self.gamma * np.eye(K)
        if mu > 0:
            D = Lam[np.newaxis] - Z @ beta
            gram = gram + mu * np.einsum("tnk,tnj->kj", D, D) / Z.shape[0]
        result = linalg.solve(gram, (R @ Lam).T)
        if result.ok:
            return linalg.LinAlgResult(value=result.value.T)
        return result

    def _beta_step(self, X, Lam, F, T, mu, beta) -> tuple:
        """
        Minimize λ||beta||² + μ·mean_t tr((Λ - Z_t beta) A (Λ - Z_t beta)').

        In the eigenbasis of A = QΣQ' the problem separates into K ridge
        regressions of Λq_k on the stacked characteristics, with penalty
        λT / (μσ_k). Returns (beta, number of failed regressions).
        """
        K = Lam.shape[1]
        if mu == 0:
            return np.zeros_like(beta), 0

        sigma, Q = linalg.symmetric_eigh(F.T @ F + self.lam * np.eye(K))
        rotated = beta @ Q
        failures = 0
        for k in range(K):
            penalty = self.lam * T / (mu * max(sigma[k], 1e-12))
            result = linalg.ridge_solve(X, np.tile(Lam @ Q[:, k], T), penalty)
            if result.ok:
                rotated[:, k] = result.value
            else:
                failures += 1
        return rotated @ Q.T, failures

    def _blend(self, empirical: np.ndarray, implied: np.ndarray) -> np.ndarray:
        """Convex blend of empirical and characteristic-implied loadings."""
        if not np.any(implied):
            # Characteristics carry no information: pure empirical fit
            return empirical
        return self.blend_ratio * empirical + (1.0 - self.blend_ratio) * implied

    def train(
        self,
        returns,
        characteristics,
        timestamps: Optional[Sequence[datetime]] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> FactorModelState:
        """
        Train the model on a returns/characteristics panel.

        Args:
            returns: T x N returns
            characteristics: T x L (shared) or T x N x L (per-asset) characteristics
            timestamps: Optional T period labels
            symbols: Optional N asset identifiers

        Returns:
            FactorModelState

        Raises:
            DataInsufficient: On too few periods or mismatched dimensions
        """
        R, Z = self._prepare_inputs(returns, characteristics, timestamps)
        T, N = R.shape
        L = Z.shape[2]
        K = self.num_factors

        if symbols is None:
            symbols = [f"ASSET_{i}" for i in range(N)]
        elif len(symbols) != N:
            raise DataInsufficient(f"Got {len(symbols)} symbols for {N} assets")

        logger.info(
            f"Training conditional factor model: {T} periods, {N} assets, {K} factors, {L} characteristics",
            extra={"extra_fields": {"periods": T, "assets": N, "factors": K, "characteristics": L}},
        )

        rng = np.random.default_rng(self.seed)
        F = linalg.random_matrix(T, K, self.init_scale, rng)
        Lam = linalg.random_matrix(N, K, self.init_scale, rng)
        beta = linalg.random_matrix(L, K, self.init_scale, rng)

        X = Z.reshape(T * N, L)
        # Characteristics that are all zero carry no information: pure empirical fit
        mu = self.prior_weight if np.any(Z) else 0.0
        loss_history: List[float] = []
        instability_count = 0
        converged = False
        prev_loss = np.inf
        iteration = 0

        for iteration in range(1, self.max_iterations + 1):
            # Step 2: characteristic-implied loadings, averaged over periods
            implied = (Z @ beta).mean(axis=0)

            # Step 3: factors given current loadings and prior
            result = self._factor_step(R, Z, Lam, beta, mu)
            if result.ok:
                F = result.value
            else:
                instability_count += 1
                self._log_instability("factor update", iteration, result.error)

            # Step 4: loadings given factors, blended with the characteristic prior
            result = linalg.ridge_solve(F, R, self.lam)
            if result.ok:
                empirical = result.value.T
                Lam = empirical if mu == 0 else (
                    self.blend_ratio * empirical + (1.0 - self.blend_ratio) * implied
                )
            else:
                instability_count += 1
                self._log_instability("loading update", iteration, result.error)

            # Step 5: refit beta on the stacked characteristics
            beta, failures = self._beta_step(X, Lam, F, T, mu, beta)
            if failures:
                instability_count += failures
                self._log_instability("beta update", iteration, f"{failures} of {K} regressions failed")

            # Step 6: convergence
            loss = self._loss(R, Z, F, Lam, beta, mu)
            loss_history.append(loss)

            if iteration % 50 == 0:
                logger.debug(f"Factor model iteration {iteration}: loss = {loss:.6f}")

            if abs(prev_loss - loss) < self.convergence_threshold:
                converged = True
                break
            prev_loss = loss

        if converged:
            logger.info(f"Factor model converged at iteration {iteration}")
        else:
            logger.warning(
                f"Factor model reached {self.max_iterations} iterations without converging",
                extra={"extra_fields": {"final_loss": loss_history[-1]}},
            )

        eigenvalues, explained = self._explained_variance(F, Lam, K)
        self._state = FactorModelState(
            factors=F,
            loadings=Lam,
            beta=beta,
            implied_loadings=Z @ beta,
            timestamps=list(timestamps) if timestamps is not None else list(range(T)),
            symbols=list(symbols),
            iterations=iteration,
            converged=converged,
            final_loss=loss_history[-1],
            loss_history=loss_history,
            instability_count=instability_count,
            eigenvalues=eigenvalues,
            explained_variance=explained,
            r_squared=self._r_squared(R, F, Lam),
        )

        logger.info(
            "Factor model training complete",
            extra={"extra_fields": {
                "iterations": iteration,
                "converged": converged,
                "final_loss": self._state.final_loss,
                "r_squared": self._state.r_squared,
                "instabilities": instability_count,
            }},
        )
        return self._state

    @staticmethod
    def _log_instability(step: str, iteration: int, error) -> None:
        logger.warning(
            f"NumericalInstability in {step} at iteration {iteration}: {error}. Keeping previous iterate.",
            extra={"extra_fields": {"step": step, "iteration": iteration}},
        )

    @staticmethod
    def _explained_variance(F: np.ndarray, Lam: np.ndarray, K: int) -> tuple:
        """
        Eigenvalues of the covariance of the fitted common component F·Λ'
        (top K, descending) and their shares. Diagnostic only.
        """
        common = F @ Lam.T
        cov = np.atleast_2d(np.cov(common, rowvar=False))
        eigenvalues = np.clip(linalg.symmetric_eigenvalues(cov), 0.0, None)[:K]
        if eigenvalues.size < K:
            eigenvalues = np.concatenate([eigenvalues, np.zeros(K - eigenvalues.size)])
        total = eigenvalues.sum()
        shares = eigenvalues / total if total > 0 else np.zeros(K)
        return eigenvalues, shares

    @staticmethod
    def _r_squared(R: np.ndarray, F: np.ndarray, Lam: np.ndarray) -> float:
        denom = np.sum((R - R.mean(axis=0)) ** 2)
        if denom <= 0:
            return 0.0
        return float(1.0 - np.sum((R - F @ Lam.T) ** 2) / denom)

    # ------------------------------------------------------------------
    # Prediction and inspection
    # ------------------------------------------------------------------

    def conditional_loadings(self, characteristics) -> np.ndarray:
        """
        Loadings conditioned on a fresh characteristic vector (L,) or matrix (N x L).

        Raises:
            ModelNotTrained: Before train()
            DataInsufficient: On a characteristic shape mismatch
        """
        state = self.state
        N, L = state.num_assets, state.num_characteristics

        z = np.asarray(characteristics, dtype=float)
        if z.ndim == 1:
            if z.shape[0] != L:
                raise DataInsufficient(f"Expected {L} characteristics, got {z.shape[0]}")
            z = np.tile(z, (N, 1))
        elif z.ndim != 2 or z.shape != (N, L):
            raise DataInsufficient(f"Expected characteristics of shape ({L},) or ({N}, {L}), got {z.shape}")
        if not linalg.is_valid(z):
            raise DataInsufficient("characteristics must be finite")

        return self._blend(state.loadings, z @ state.beta)

    def predict(self, characteristics) -> np.ndarray:
        """
        One-period-ahead expected return per asset.

        Args:
            characteristics: Fresh characteristic vector (L,) or per-asset matrix (N x L)

        Returns:
            Expected returns (N,)
        """
        loadings = self.conditional_loadings(characteristics)
        return loadings @ self.state.latest_factors

    def predict_series(self, characteristics) -> pd.Series:
        """Expected returns indexed by the symbols given at training time."""
        return pd.Series(self.predict(characteristics), index=self.state.symbols, name="expected_return")

    def factor_exposures(self, asset: int) -> np.ndarray:
        """Loadings of a single asset (K,)."""
        state = self.state
        if not 0 <= asset < state.num_assets:
            raise IndexError(f"Asset index {asset} out of range [0, {state.num_assets})")
        return state.loadings[asset].copy()

    def time_varying_loadings(self) -> np.ndarray:
        """Characteristic-implied loadings for every training period (T x N x K)."""
        return self.state.implied_loadings.copy()

    def export_state(self) -> Dict[str, Any]:
        """Plain-Python export of the trained model."""
        state = self.state
        return {
            "factors": state.factors.tolist(),
            "loadings": state.loadings.tolist(),
            "beta": state.beta.tolist(),
            "symbols": list(state.symbols),
            "explained_variance": state.explained_variance.tolist(),
            "converged": state.converged,
            "iterations": state.iterations,
            "config": {
                "NUM_FACTORS": self.num_factors,
                "GAMMA": self.gamma,
                "LAMBDA": self.lam,
                "BLEND_RATIO": self.blend_ratio,
                "MAX_ITERATIONS": self.max_iterations,
                "CONVERGENCE_THRESHOLD": self.convergence_threshold,
            },
        }
