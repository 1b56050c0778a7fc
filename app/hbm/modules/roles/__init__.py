"""
Roles module: role/permission management with immutable built-in roles.
"""
