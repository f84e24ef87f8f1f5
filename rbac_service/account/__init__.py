"""
Account routes for any authenticated user:
- Current user and profile
- Personal dashboard
"""
