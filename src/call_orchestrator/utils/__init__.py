"""Logging and phone number helpers."""
