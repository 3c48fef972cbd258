"""
Irshad Backend: Application Package
====================================

What: Administration backend for the Mahad (adult cohort) and Dugsi
      (children's weekend) programs: registration, family management,
      Stripe billing reconciliation, attendance and teacher check-in.
Who:  Imported by uvicorn (`app.main:app`), Alembic and pytest.

Layout:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← validation, matching, billing
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Stripe webhooks enter through routes/webhooks.py and are reconciled by
    services/webhook_service.py against the same models.
"""

__version__ = "1.0.0"
