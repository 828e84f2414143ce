# src/services/marketplace/__init__.py
"""
HTTP API маркетплейса поездок.
"""
