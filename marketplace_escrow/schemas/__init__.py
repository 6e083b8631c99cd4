"""Pydantic schemas for the marketplace escrow API."""
