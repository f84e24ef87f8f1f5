"""
Authentication service for the RBAC backend.

This module provides authentication and authorization services:
- User registration and login
- Signed, purpose-tagged JWT tokens
- Password reset
- Role-based access control gates
"""
