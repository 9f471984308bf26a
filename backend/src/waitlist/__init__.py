"""Waitlist backend: referral tracking and credit issuance."""

__version__ = "1.0.0"
