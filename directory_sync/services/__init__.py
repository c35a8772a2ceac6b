"""
Directory services the reconciliation engine can write to.
"""

from directory_sync.services.base import UpdateService, UpdateServiceError

__all__ = ['UpdateService', 'UpdateServiceError']
