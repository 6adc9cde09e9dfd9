"""
Persistence package for the Products Service.

Provides the PostgreSQL store of record for product rows.
"""
