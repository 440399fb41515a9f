"""
CareXPS Auth Service

Tenant-isolated, MFA-protected authentication backend for the CareXPS
healthcare CRM. Two customer deployments share one database; every
tenant-owned row is reached through a tenant scope.
"""

__version__ = "1.0.0"
