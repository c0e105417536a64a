"""
Cash Grid - hierarchical, time-bucketed cash flow models

Builds an editable line-item grid from classification data, keeps every
derived total and running balance consistent after each edit, and
merges externally generated forecasts onto the time axis.
"""

__version__ = "1.0.0"
__author__ = "Cash Flow Team"
