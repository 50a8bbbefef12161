"""Domain-level policies.

Roles and the permissions they grant live here, independent from the
routes and services that enforce them.
"""
