"""
Factor Layer
============

Conditional factor model: time-varying loadings driven by asset
characteristics, trained by ridge-regularized alternating least squares.
"""

from .ipca import ConditionalFactorModel, FactorModelState
from .panel import build_panel

__all__ = ["ConditionalFactorModel", "FactorModelState", "build_panel"]
