"""
Models, errors and the in-memory definition index.
"""
