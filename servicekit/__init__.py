"""Operational building blocks for Python services: cache client, metrics, observability."""
