"""
SnipShare — Services Package
============================

What:  The application logic between the HTTP routes and the backend client.

Modules:
    pool        LeasePool, the concurrency bound on backend calls
    debounce    Debouncer for search terms
    auth_store  AuthStore, observable auth state of one client session
    feed        FeedAggregator (backend reads / vote writes) and FeedView
    forms       FormFlows, the validated write operations
    sessions    SessionRegistry, cookie → per-browser state
"""
