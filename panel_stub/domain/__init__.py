"""Pure domain utilities: signed tokens and upload names.

Free of FastAPI/HTTP concerns so they can be unit-tested on their own.
"""
__all__ = ["paths", "tokens"]
