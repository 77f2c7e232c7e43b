"""Adapters: persistence for the skill trust engine.

Contains:
- database.py: Primary DB engine and session dependency
- repositories.py: SQLAlchemy repositories for the primary DB
- audit_wall.py: Separate audit DB session factory and AuditLogStore
"""

__all__: list[str] = []
