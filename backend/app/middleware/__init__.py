# Middleware package init
"""
SuperClip Backend — Middleware Package
========================================

Middleware Chain (order of execution):
    Request → [Request ID] → [Rate Limit] → [Logging] → [Security Headers]
            → [GZip] → [CORS] → Route Handler

    1. Request ID first: every response, 429s included, carries a correlation ID
    2. Rate Limit: reject abusive clients before any route work
    3. Logging: sees the final status, duration and authenticated user
    4. Security headers: added to every response, errors included

Authentication and entitlement checks are not middleware: they are FastAPI
dependencies (app/dependencies.py) so each route declares exactly the gates
it needs.
"""
