"""Concrete engine adapters.

Adapters import their backend at module level; import them lazily.
"""
