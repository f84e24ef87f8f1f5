"""
Role-based access control backend: JWT authentication and role-gated dashboards.
"""
