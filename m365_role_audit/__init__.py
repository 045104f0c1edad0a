"""
M365 Privileged Role Audit
==========================
A read-only audit of privileged role assignments across Microsoft 365
services: collects assignments, removes duplicates, aggregates statistics
and produces security and compliance reports.

The audit never modifies the tenant.
"""

__version__ = "1.0.0"
__mode__ = "READ-ONLY"
