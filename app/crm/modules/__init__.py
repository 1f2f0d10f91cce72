"""
Feature modules live under this package.

Each module owns its routes, templates and payload rules, and reaches the
backend only through the request's CrmApiClient (g.api).
"""
