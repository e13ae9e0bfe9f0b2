"""Billing persistence models."""
