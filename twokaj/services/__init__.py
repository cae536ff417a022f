"""
Services package
"""
from twokaj.services.auth_service import AuthService
from twokaj.services.sync_service import process_sync_batch

__all__ = [
    "AuthService",
    "process_sync_batch",
]
