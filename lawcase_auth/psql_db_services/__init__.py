"""
Database Services Package
-------------------------
PostgreSQL services for the credential store.

This package provides:
- Base service class with session and transaction management
- CredentialStoreService, the PostgreSQL credential store backend
"""

from lawcase_auth.psql_db_services.base_service import BaseDatabaseService
from lawcase_auth.psql_db_services.credential_store_service import (
    CredentialStoreService,
)

__all__ = [
    "BaseDatabaseService",
    "CredentialStoreService",
]
