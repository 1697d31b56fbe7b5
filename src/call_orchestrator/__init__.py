"""Outbound call-lifecycle orchestration service."""
