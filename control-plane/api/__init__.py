"""
API modules
"""
