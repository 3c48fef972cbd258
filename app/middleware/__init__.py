# Middleware package init
"""
Irshad Backend: Middleware Package
===================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    Rate limiting runs first so abusive traffic is rejected before a request
    id or a log line is spent on it. Stripe webhook paths skip it: Stripe
    retries in bursts from a small set of IPs.
"""
