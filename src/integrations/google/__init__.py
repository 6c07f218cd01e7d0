from .auth import ServiceAccountAuth

__all__ = ['ServiceAccountAuth']
