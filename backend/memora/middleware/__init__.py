"""
Memora Backend — Middleware Package
=====================================

Middleware Chain (execution order):
    Request → [CORS] → [GZip] → [Request ID] → [Access Log]
            → [Rate Limit (/api/public only)] → Route Handler

    Responses travel back through the same chain, so a 429 from the rate
    limiter still carries the request id and appears in the access log.
"""
