# Services package init
"""
Irshad Backend: Services Layer
===============================

What:  Business logic between the routes (HTTP) and the models (persistence).
How:   Each service is a stateless class with a module-level singleton; every
       method takes the request's AsyncSession and flushes, never commits.

Service Inventory:
    - contact, tuition:        pure normalization and rate helpers
    - registration_service:    person/profile/contact creation for both programs
    - family_service:          Dugsi families, parents, siblings, family delete
    - billing_service:         billing accounts, assignments, status queries
    - subscription_service:    local mirror of Stripe subscriptions
    - billing_matcher:         checkout session → person matching
    - checkout_service:        Stripe Checkout sessions (Dugsi payment link, Mahad)
    - invoice_service:         paid invoices → StudentPayment, invoice admin actions
    - consolidation_service:   attach a Dugsi subscription to a family
    - orphan_service:          live Stripe subscriptions with no profile
    - payment_service:         bank account micro-deposit verification
    - webhook_processor:       Stripe webhook verify/dedupe/dispatch
    - withdrawal_service:      withdraw, re-enroll, pause/resume family billing
    - attendance_service:      weekend sessions and records
    - class_service:           Dugsi classes and rosters (single and bulk)
    - teacher_service:         teachers, assignments, check-in and its reports
    - batch_service:           Mahad cohorts
    - dashboard_service:       per-program aggregates
    - stripe_gateway:          outbound Stripe calls (retry + circuit breaker)
"""
