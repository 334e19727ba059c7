"""
Portfolio construction: cost-aware allocation and execution planning.
"""

from .allocator import TransactionCostAllocator, project_weights, recommend_rebalance, turnover
from .costs import CostModel
from .covariance import build_covariance, estimate_correlation
from .execution import ExecutionPlanner

__all__ = [
    'TransactionCostAllocator',
    'CostModel',
    'ExecutionPlanner',
    'build_covariance',
    'estimate_correlation',
    'project_weights',
    'recommend_rebalance',
    'turnover',
]
