"""Escrow, dispute and trust-tier services for a digital-goods marketplace."""
