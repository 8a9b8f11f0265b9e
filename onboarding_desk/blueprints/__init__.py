"""
Counterparty Onboarding Desk
Blueprint registry.
"""
