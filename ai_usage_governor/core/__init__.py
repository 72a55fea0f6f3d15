"""
Core modules for AI Usage Governor.

This package contains quota enforcement, provider failover, response
parsing and the per-feature orchestrators.
"""
