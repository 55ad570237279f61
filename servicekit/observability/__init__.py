"""Structured logging, Pushgateway metrics and request-scoped observability contexts.

Import from the submodules; this package keeps no state of its own.
"""
