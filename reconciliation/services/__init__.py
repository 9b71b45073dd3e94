# Reconciliation and cash-flow services
from .cashflow import CashFlowDeriver, build_waterfall
from .column_mapper import ColumnMapper
from .comparison_engine import ComparisonEngine
from .discrepancy_classifier import DiscrepancyClassifier
from .index_reconciler import IndexReconciler

__all__ = [
    "CashFlowDeriver",
    "ColumnMapper",
    "ComparisonEngine",
    "DiscrepancyClassifier",
    "IndexReconciler",
    "build_waterfall",
]
