"""
odjitter: disaggregate zone-level origin/destination data into point-to-point trips.
"""

__version__ = "0.2.0"
