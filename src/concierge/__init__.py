"""
Concierge package: greets door-phone callers, works out who they want, and
connects them.
"""
