"""
SuperClip Backend — Application Package Initializer
===================================================

What: Marks the `app` directory as a Python package.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend is layered the same way top to bottom:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Dependencies (Request Gate)       │  ← authenticate, gate by plan/feature/quota
    ├─────────────────────────────────────┤
    │  Services (Token, Entitlements,     │  ← decision logic, no HTTP
    │            Accounts)                │
    ├─────────────────────────────────────┤
    │   Usage stores / Models / Schemas   │  ← in-memory or SQLAlchemy, Pydantic
    └─────────────────────────────────────┘

    The entitlement engine and the token service never import FastAPI, so they
    can be exercised from tests or scripts without an HTTP stack.
"""

__version__ = "1.0.0"
