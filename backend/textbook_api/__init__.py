"""
Textbook API — Application Package Initializer
===============================================

What: Marks the `textbook_api` directory as a Python package.
Why:  Enables module imports like `from textbook_api.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend is a thin, session-gated layer in front of one PostgreSQL database:

    ┌─────────────────────────────────────┐
    │   Middleware (CORS, headers, logs,  │  ← Cross-cutting, every request
    │   rate limiting)                    │
    ├─────────────────────────────────────┤
    │   Routes + Access Guard             │  ← HTTP concerns, session gating
    ├─────────────────────────────────────┤
    │   Services (auth, profile,          │  ← Business rules
    │   personalization)                  │
    ├─────────────────────────────────────┤
    │   Database (single pooled engine)   │  ← One connection per process
    └─────────────────────────────────────┘

    Each serverless instance holds at most one database connection, so the
    pool handle is created once by the application factory and passed down
    through dependency injection.
"""

__version__ = "2.0.0"
