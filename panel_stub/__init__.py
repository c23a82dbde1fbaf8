"""Stub panel backend speaking the auth and chunk-upload wire contract.

Used by the smoke runner and integration tests; not the panel's business logic.
"""
