"""
Source package initialization.
"""

from . import crm_sync
from . import integrations

__all__ = [
    'crm_sync',
    'integrations'
]
