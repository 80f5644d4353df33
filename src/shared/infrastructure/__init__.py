"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Bounded parallel batch processing
"""
