"""
Storage Package.

Persists protocol state snapshots so windowing resumes after a
restart without losing or double-counting time.

Modules:
- database: Engine, session factory, schema creation
- models/: ORM models
- repositories/: Data access layer
"""
