"""tenantauth — multi-tenant authentication and session lifecycle.

Creates company (tenant) accounts, authenticates users against
tenant-scoped memberships, issues short-lived access tokens and
long-lived rotating refresh sessions, and gates protected routes
by role.
"""

__version__ = "0.1.0"
