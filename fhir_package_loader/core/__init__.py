"""
Process-wide defaults: settings read from the environment and the shared loader.
"""
