"""
Sales BI Pipeline
Configuration Module
"""
from .settings import DataLakeSettings, PipelineSettings, Settings, get_settings

__all__ = ["DataLakeSettings", "PipelineSettings", "Settings", "get_settings"]
