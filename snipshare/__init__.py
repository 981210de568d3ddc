"""
SnipShare — Application Package Initializer
===========================================

What: Marks the `snipshare` directory as a Python package.
Who:  Used by uvicorn (`snipshare.main:app`), pytest, and the services layer.

Architecture Note:
    SnipShare is a thin forms-and-feed layer over an external
    backend-as-a-service (auth + table API). It owns no database.

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (forms, feed, auth store) │  ← Validation, aggregation, state
    ├─────────────────────────────────────┤
    │   Lease pool (concurrency counter)  │  ← Bounds concurrent checkouts
    ├─────────────────────────────────────┤
    │  Backend client (auth + tables)     │  ← One shared HTTP client
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
