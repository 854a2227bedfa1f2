"""XS Card API.

FastAPI backend for the XS Card app, providing:
- Bulk event registration with Paystack checkout and ticket delivery
- iOS app version gating
- Subscription plan changes with proration
- RevenueCat webhook intake and verified subscription status

Security: Firebase Auth tokens required for all non-public endpoints.
"""
