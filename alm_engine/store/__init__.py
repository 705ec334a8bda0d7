"""
Account Store Package for the ALM Engine.

Adapters over the local identity database: the OS shadow files, a JSON
document, or memory.
"""

from .base import AccountStore
from .json_store import JsonAccountStore
from .memory import InMemoryAccountStore
from .shadow import ShadowAccountStore

__all__ = [
    "AccountStore",
    "InMemoryAccountStore",
    "JsonAccountStore",
    "ShadowAccountStore",
]
