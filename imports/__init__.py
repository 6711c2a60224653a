"""Uploaded location-history parsing."""
