"""
Office access control: role/permission authorization, hierarchical
geographic scoping, and time-boxed feature entitlements for offices.
"""

__version__ = "1.0.0"
