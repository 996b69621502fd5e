"""
Core module - configuration, database, security, email, events and scheduling.
"""
