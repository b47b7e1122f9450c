"""
logvault Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Pipeline tests against in-memory Kafka and S3 stand-ins
"""
