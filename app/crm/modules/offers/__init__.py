"""
Offers: list joined with customers, inline status changes, detail with the
customer card, create/edit forms, delete behind a confirm step.
"""
