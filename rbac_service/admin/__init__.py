"""
Administration routes, restricted to the admin role:
- User management
- Admin dashboard
"""
