"""Operator API, Resource Registry service and their configuration."""
