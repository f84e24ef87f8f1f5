"""
Manager routes, open to the admin and manager roles:
- Reports
- Manager dashboard
"""
