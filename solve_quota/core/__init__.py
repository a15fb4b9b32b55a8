"""
Core modules for Solve Quota.

This package contains the usage calendar, identity resolution,
entitlement checks, the quota ledger, and the client-side usage cache.
"""
