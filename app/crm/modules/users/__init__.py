"""
User administration (ADMIN only): list accounts and change their role.
"""
