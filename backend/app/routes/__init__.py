# Routes package init
"""
SuperClip Backend — API Routes Package
=========================================

Route Inventory:
    - auth.py:          POST /api/auth/register, POST /api/auth/login, GET /api/auth/me
    - subscription.py:  GET  /api/subscription
                        GET  /api/subscription/features/{feature}
                        GET  /api/subscription/usage/{usage_type}
                        POST /api/subscription/usage/{usage_type}
    - health.py:        GET  /health

Routes are thin: they declare their gates (app/dependencies.py), call a
service, and return a schema. Failures are raised as AppError and rendered
by the handlers in main.py.
"""
