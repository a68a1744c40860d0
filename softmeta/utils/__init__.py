"""
Utilities: exceptions with automatic logging.
"""
