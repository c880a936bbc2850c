"""
jitstats: run ANALYZE just in time for tables a query reads without statistics.
"""

__version__ = "0.1.0"
