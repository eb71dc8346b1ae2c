"""
Domain layer for bounce processing business logic.

This layer contains:
- Status code classification (RFC 3463)
- Data models (type-safe structures)
- Business logic (bounce processing pipeline)
- Result types (explicit success/failure handling)
"""
