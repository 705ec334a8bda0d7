"""
Command line interface for the ALM Engine.
"""
