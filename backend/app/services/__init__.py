# Services package init
"""
SuperClip Backend — Services Layer
=====================================

Service Inventory:
    - TokenService:        issue/verify signed bearer tokens (token_service.py)
    - EntitlementService:  plans, feature access, usage quotas (subscription_service.py)
    - UsageStore:          in-memory and database usage counters (usage_store.py)
    - AccountService:      register/login/me, issues tokens (account_service.py)

Services never import FastAPI; they raise AppError and return plain values,
dataclasses, or Pydantic schemas.
"""
