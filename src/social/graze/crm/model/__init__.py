"""
Database Models

This package defines the database models for the MCP-CRM service using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- ephemeral.py: The three expiring relations used by the protocol layer (PKCE challenges,
  authorization codes, SSE sessions) and their store operations
- crm.py: Tenants, users, the generic CRM record store and the audit log
- health.py: Health monitoring gauge

The ephemeral relations share one lifecycle: they are created with an expiry, read at most once
(the read deletes the row), or removed by the expiry sweep. Expiry is always re-checked when a
row is read, so rows the sweep has not reached yet are never honoured.

Bearer tokens held by the ephemeral relations are encrypted at rest with the service's Fernet
key.
"""
