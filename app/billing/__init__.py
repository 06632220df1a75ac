"""
Deferred billing for process-service jobs.

A job is charged off-session, at most once, after its affidavit of
service is signed in the case-management system. Stripe is authoritative
for charge outcome; the case-management system owns the invoice.
"""
