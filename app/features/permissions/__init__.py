"""
Authorization core.

Role hierarchy, capability catalog and the decision engine that every
organization-scoped route and admin-management operation goes through.
"""
