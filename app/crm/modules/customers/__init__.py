"""
Customers: list with search and status filter, detail, create/edit forms
with client-side field checks, delete behind a confirm step.
"""
