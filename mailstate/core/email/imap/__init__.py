from .connection import IMAPConnection

__all__ = ['IMAPConnection']
