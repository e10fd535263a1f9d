"""
Billing Domain

Stripe deposit checkout, payment webhooks, saved cards and
remaining-balance charges for contracts.
"""
