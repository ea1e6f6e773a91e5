"""
Memora Backend — Application Package Initializer
==================================================

What: Marks the `memora` directory as a Python package.
Why:  Enables module imports like `from memora.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend is a layered FastAPI application:

    ┌─────────────────────────────────────┐
    │   Routes (owner, public, webhooks)  │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (access, limits, billing) │  ← Business rules
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Guests never authenticate as users. They carry a guest token bound to a
    single phase; owners carry a personal access token.
"""

__version__ = "1.0.0"
