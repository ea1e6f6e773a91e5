"""
Memora Backend — API Routers
==============================

    health.py         GET /health
    users.py          POST /api/users
    subscriptions.py  /api/subscriptions/...        (owner)
    webhooks.py       POST /api/webhooks/{provider} (payment providers)
    proofing_requests.py  /api/proofing/{id}/requests (owner),
                      /api/public/proofing-requests/{token} (client)
    public.py         /api/public/{kind}/{id}/...   (guest token)
    downloads.py      /api/public/raw-files/{id}/download/...
    phases.py         /api/{kind}/...               (owner; mounted last, its
                                                     {kind} segment is a catch-all)
"""
