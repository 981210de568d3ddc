"""
SnipShare — Middleware Package
==============================

Request → [Request ID] → [Logging] → [CORS] → route handler

The request ID is assigned first so the access log line carries it.
"""
