# Schemas package init
"""
Memora Backend — Pydantic Request/Response Schemas
====================================================

Schemas are separate from SQLAlchemy models so the API contract can hide
internal columns (password hashes, token digests, allow-lists for guests)
and add computed fields (remaining selections, accessibility flags).
"""
