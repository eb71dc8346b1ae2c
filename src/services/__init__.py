"""
Utility functions for bounce handler operations.

This package contains reusable service functions for DSN parsing, email
header handling and S3 interactions.
"""

__all__ = ['dsn', 'email', 's3']
