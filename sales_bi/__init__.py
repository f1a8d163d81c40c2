"""
Sales BI Pipeline

Batch transformation of raw e-commerce extracts into a star schema and
semantic metric views (KPI rollups, RFM, cohort retention, Pareto, CLV).
"""

__version__ = "1.0.0"
