"""
Shipping module

Courier provider adapters behind a registry, dispatched by provider id.
"""
