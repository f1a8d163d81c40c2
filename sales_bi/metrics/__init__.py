"""
Semantic Metric Views Module
"""
from .analytics import clv_simple, monthly_cohort, pareto_products, rfm
from .guardrails import run_guardrails
from .views import MetricViewLayer, build_base_view

__all__ = [
    "MetricViewLayer",
    "build_base_view",
    "rfm",
    "monthly_cohort",
    "pareto_products",
    "clv_simple",
    "run_guardrails",
]
