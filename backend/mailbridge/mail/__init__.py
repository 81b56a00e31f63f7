"""
Mail package.

WHY: Everything that knows about email itself: the normalized model, MIME
composition and parsing, label semantics and the backend clients.
"""
