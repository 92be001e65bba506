"""
Repository layer for data access.

Repositories encapsulate SQLAlchemy queries for accounts, orders, items, stage
history and the audit trail. Services depend on the TrackingRepository protocol
so that an in-memory implementation can stand in for the database in tests.
"""
