"""
Synthetic Data Module
"""
from .generators import MessRates, RawDataGenerator, generate_raw_dataset

__all__ = ["MessRates", "RawDataGenerator", "generate_raw_dataset"]
