"""
Mailbridge: a stateless mail proxy.

WHY: One HTTP API in front of Gmail, Microsoft Graph and Postmark, plus the
quote email workflow built on top of it.
"""

__version__ = "0.1.0"
