"""
Ediens Backend — Application Package
======================================

What: FastAPI backend for Ediens, a marketplace where people and businesses
      share surplus food before it goes to waste.

Architecture:
    ┌─────────────────────────────────────┐
    │     Routes + Dependencies (HTTP)    │  ← status codes, auth, headers
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← claim lifecycle, posts, auth
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The claim lifecycle (services/claim_state.py, services/reservations.py,
    services/claim_service.py) is the core; everything else feeds it.
"""

__version__ = "1.0.0"
