"""
DataStat: a deterministic, in-memory analytics engine for tabular datasets.
"""
__version__ = "1.0.0"
