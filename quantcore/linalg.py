"""
Linear Algebra Utility
======================

Dense matrix/vector primitives used by the factor model and the allocator.

Solvers never raise for numerical reasons. They return a ``LinAlgResult``
carrying either the value or a ``NumericalInstability`` describing why the
system could not be solved (singular, ill-conditioned, non-finite output).
Callers choose the fallback explicitly:

    result = ridge_solve(F, R, penalty=gamma)
    loadings = result.unwrap_or(previous_loadings)

Shape mismatches are programming errors and raise ``ValueError``.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

import numpy as np
import scipy.linalg

from quantcore.exceptions import NumericalInstability

T = TypeVar("T")

# Systems with a larger condition number are treated as singular
MAX_CONDITION = 1e12


@dataclass(frozen=True)
class LinAlgResult(Generic[T]):
    """Value-or-error result of a linear algebra operation."""

    value: Optional[T] = None
    error: Optional[NumericalInstability] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the stored NumericalInstability."""
        if self.error is not None:
            raise self.error
        return self.value

    def unwrap_or(self, fallback: T) -> T:
        """Return the value, or ``fallback`` if the operation failed."""
        return fallback if self.error is not None else self.value


def zeros(rows: int, cols: int) -> np.ndarray:
    return np.zeros((rows, cols), dtype=float)


def identity(size: int) -> np.ndarray:
    return np.eye(size, dtype=float)


def random_matrix(
    rows: int,
    cols: int,
    scale: float = 1.0,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Uniform random matrix with entries in [-scale, scale]."""
    rng = rng if rng is not None else np.random.default_rng()
    return (rng.random((rows, cols)) - 0.5) * 2.0 * scale


def _as_2d(A) -> np.ndarray:
    A = np.asarray(A, dtype=float)
    if A.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got shape {A.shape}")
    return A


def multiply(A, B) -> np.ndarray:
    A, B = _as_2d(A), _as_2d(B)
    if A.shape[1] != B.shape[0]:
        raise ValueError(
            f"Matrix dimensions don't match: {A.shape[0]}x{A.shape[1]} * {B.shape[0]}x{B.shape[1]}"
        )
    return A @ B


def transpose(A) -> np.ndarray:
    return _as_2d(A).T.copy()


def add(A, B) -> np.ndarray:
    A, B = _as_2d(A), _as_2d(B)
    if A.shape != B.shape:
        raise ValueError(f"Cannot add {A.shape} and {B.shape}")
    return A + B


def subtract(A, B) -> np.ndarray:
    A, B = _as_2d(A), _as_2d(B)
    if A.shape != B.shape:
        raise ValueError(f"Cannot subtract {B.shape} from {A.shape}")
    return A - B


def scale(A, scalar: float) -> np.ndarray:
    return _as_2d(A) * float(scalar)


def frobenius_norm(A) -> float:
    return float(np.linalg.norm(np.asarray(A, dtype=float)))


def is_valid(A) -> bool:
    """True if the array contains no NaN or infinity."""
    return bool(np.all(np.isfinite(np.asarray(A, dtype=float))))


def _check_square(A: np.ndarray, operation: str) -> None:
    if A.shape[0] != A.shape[1]:
        raise ValueError(f"{operation} requires a square matrix, got {A.shape}")


def _condition_error(A: np.ndarray, operation: str) -> Optional[NumericalInstability]:
    if not is_valid(A):
        return NumericalInstability(f"{operation}: matrix contains non-finite values", operation)
    if A.size == 0:
        return NumericalInstability(f"{operation}: empty matrix", operation)
    cond = float(np.linalg.cond(A))
    if not np.isfinite(cond) or cond > MAX_CONDITION:
        return NumericalInstability(
            f"{operation}: matrix is singular or ill-conditioned (cond={cond:.3e})",
            operation,
            condition_number=cond,
        )
    return None


def solve(A, b) -> LinAlgResult:
    """Solve ``A x = b`` (b may be a vector or a matrix of right-hand sides)."""
    A = _as_2d(A)
    _check_square(A, "solve")
    b = np.asarray(b, dtype=float)
    if b.shape[0] != A.shape[0]:
        raise ValueError(f"Right-hand side has {b.shape[0]} rows, expected {A.shape[0]}")

    error = _condition_error(A, "solve")
    if error is not None:
        return LinAlgResult(error=error)

    try:
        x = scipy.linalg.solve(A, b, check_finite=False)
    except (np.linalg.LinAlgError, scipy.linalg.LinAlgError) as e:
        return LinAlgResult(error=NumericalInstability(f"solve: {e}", "solve"))

    if not is_valid(x):
        return LinAlgResult(error=NumericalInstability("solve: non-finite solution", "solve"))
    return LinAlgResult(value=x)


def inverse(A) -> LinAlgResult:
    """Matrix inverse."""
    A = _as_2d(A)
    _check_square(A, "inverse")
    error = _condition_error(A, "inverse")
    if error is not None:
        return LinAlgResult(error=error)

    try:
        inv = scipy.linalg.inv(A, check_finite=False)
    except (np.linalg.LinAlgError, scipy.linalg.LinAlgError) as e:
        return LinAlgResult(error=NumericalInstability(f"inverse: {e}", "inverse"))

    if not is_valid(inv):
        return LinAlgResult(error=NumericalInstability("inverse: non-finite result", "inverse"))
    return LinAlgResult(value=inv)


def ridge_solve(X, Y, penalty: float) -> LinAlgResult:
    """
    Ridge regression coefficients ``B = (X'X + penalty·I)^-1 X'Y``.

    Args:
        X: Design matrix (n x p)
        Y: Targets (n x q) or (n,)
        penalty: Ridge term added to the Gram diagonal (>= 0)

    Returns:
        LinAlgResult with B of shape (p x q) or (p,)
    """
    X = _as_2d(X)
    Y = np.asarray(Y, dtype=float)
    if Y.shape[0] != X.shape[0]:
        raise ValueError(f"X has {X.shape[0]} rows but Y has {Y.shape[0]}")
    if penalty < 0:
        raise ValueError(f"Ridge penalty must be non-negative, got {penalty}")

    gram = X.T @ X + penalty * np.eye(X.shape[1])
    return solve(gram, X.T @ Y)


def symmetric_eigenvalues(A) -> np.ndarray:
    """Eigenvalues of a symmetric matrix in descending order."""
    A = _as_2d(A)
    _check_square(A, "symmetric_eigenvalues")
    sym = 0.5 * (A + A.T)
    return scipy.linalg.eigh(sym, eigvals_only=True)[::-1]


def symmetric_eigh(A):
    """Eigenvalues (descending) and matching orthonormal eigenvectors (as columns)."""
    A = _as_2d(A)
    _check_square(A, "symmetric_eigh")
    sym = 0.5 * (A + A.T)
    values, vectors = scipy.linalg.eigh(sym)
    return values[::-1], vectors[:, ::-1]
