from .client import GmailMessageSource, parse_gmail_message

__all__ = [
    'GmailMessageSource',
    'parse_gmail_message'
]
