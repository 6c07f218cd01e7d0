from .client import GoogleSheetsStore

__all__ = ['GoogleSheetsStore']
