"""
Tier Matrix Package

Tiered volume-pricing matrix engine: shared quantity breakpoints across a
hierarchy of service variants, local editing and store reconciliation.
"""

__version__ = "1.0.0"
