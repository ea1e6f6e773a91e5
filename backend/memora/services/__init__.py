# Services package init
"""
Memora Backend — Services Layer
=================================

What:  Business logic between routes (HTTP) and the database (persistence).
How:   Module-level singletons take an AsyncSession plus domain objects,
       apply the rules and return ORM rows or response schemas.

Service Inventory:
    - phase_registry:        per-kind capabilities (tables, limit fields)
    - limit_service:         effective limit, reset window, selection count
    - guest_access_service:  status check, password, token issue/resolve
    - phase_service:         owner CRUD, publish, reset, complete
    - media_service:         sets, media, toggle/approve/reject, filenames
    - archive_service:       background ZIP builds for raw files
    - proofing_request_service: closure/approval requests answered by token
    - retention_service:     auto-delete of unselected media after completion
    - user_service:          owner accounts and access tokens
    - subscription_service:  checkout and webhook reconciliation
    - webhook_event_service: webhook audit log
    - notification_service:  outbound notification hook (logged)
    - cache_service:         in-process TTL cache
    - payments:              provider adapters (Stripe, Paystack, Flutterwave, PayPal)
"""
