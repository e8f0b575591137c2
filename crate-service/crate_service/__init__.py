"""
Crate Service - social layer for vinyl collectors
"""
__version__ = "1.0.0"
