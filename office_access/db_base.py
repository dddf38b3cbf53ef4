"""
Declarative base shared by the entitlement tables.

Tests call Base.metadata.create_all() after importing
office_access.entitlements.models, so this module imports nothing from
the package.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
