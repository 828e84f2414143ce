# src/core/jit/__init__.py
"""
JIT-заявки: оплата до появления заявки.
"""
