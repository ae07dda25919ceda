# dedupe_app/utils/__init__.py
"""
Shared application utilities
"""
