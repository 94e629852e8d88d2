"""
REST API blueprints.
"""
