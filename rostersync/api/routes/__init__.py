"""
API routes.

- sync: trigger, monitor and cancel roster/stat sync runs; manual player links
"""
