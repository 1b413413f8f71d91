"""
Shared services.
"""
