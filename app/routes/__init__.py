# Routes package init
"""
Irshad Backend: API Routes Package
===================================

Route Inventory:
    - dugsi.py:       /api/dugsi/*        families, students, withdrawals, tuition
    - mahad.py:       /api/mahad/*        registration, batches, tuition
    - billing.py:     /api/billing/*      billing status, manual subscription links
    - webhooks.py:    /api/webhooks/*     Stripe webhook receiver
    - attendance.py:  /api/attendance/*   weekend sessions and records
    - classes.py:     /api/classes/*      Dugsi classes, teachers, rosters
    - teachers.py:    /api/teachers/*     teachers, assignments, check-ins
    - dashboard.py:   /api/dashboard/*    per-program overview
    - health.py:      /health

Routes are thin: they extract request data, call one service, and shape the
response. Business rules and transactions live in services.
"""
