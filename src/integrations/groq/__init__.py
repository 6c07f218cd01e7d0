from .client_wrapper import EnhancedGroqClient

__all__ = [
    'EnhancedGroqClient'
]
