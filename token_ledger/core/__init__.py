"""
Core modules for Token Ledger.

This package contains the usage aggregation engine, period arithmetic,
view selections, provider grouping and subscription costs.
"""
