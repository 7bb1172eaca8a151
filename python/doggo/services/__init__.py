"""Business logic services.

Services are called by route handlers and the worker; they own all
database access and collaborator calls.
"""
