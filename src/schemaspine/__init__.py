"""
schema-spine - zero-downtime schema evolution and transactional consistency
primitives for PostgreSQL.

- schemaspine.core: errors, logging, settings, retry, transaction boundary
- schemaspine.consistency: ACID helpers, concurrency control, saga, advisory lock
- schemaspine.evolution: migration plans, evolution manager, config builder
- schemaspine.cli: ``schemaspine`` command line
"""

__version__ = "0.1.0"
