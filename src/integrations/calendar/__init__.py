from .client import GoogleCalendarSource

__all__ = ['GoogleCalendarSource']
