"""
Plans, quotas and the Starter Pack.

Billing provider events arrive signed at /api/billing/events (billing.py);
entitlement rules live in service.py and never touch Flask.
"""
