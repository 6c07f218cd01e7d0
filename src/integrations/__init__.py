from .calendar.client import GoogleCalendarSource
from .gmail.client import GmailMessageSource
from .google.auth import ServiceAccountAuth
from .groq.client_wrapper import EnhancedGroqClient
from .sheets.client import GoogleSheetsStore

__all__ = [
    'GoogleCalendarSource',
    'GmailMessageSource',
    'ServiceAccountAuth',
    'EnhancedGroqClient',
    'GoogleSheetsStore',
]
