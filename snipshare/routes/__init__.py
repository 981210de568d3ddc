"""
SnipShare — API Routes Package
==============================

Route Inventory:
    - auth.py:     GET  /api/auth/check, GET /auth/callback,
                   POST /api/auth/register | signin | signout | password,
                   GET  /api/auth/state
    - profile.py:  GET | PATCH /api/profile, GET /api/profile/snippets
    - feed.py:     GET  /api/feed, PUT /api/feed/filters,
                   POST /api/snippets, PATCH | DELETE /api/snippets/{id},
                   POST /api/snippets/{id}/vote,
                   GET | POST /api/snippets/{id}/comments,
                   DELETE /api/comments/{id}
    - health.py:   GET  /health

Routes stay thin: extract the request data, call a service, shape the
response. Validation messages and error classification live in services.
"""
