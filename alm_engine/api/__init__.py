"""
REST API for the ALM Engine.
"""
