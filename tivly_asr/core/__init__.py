"""
Core module - configuration, wire models, errors and shared helpers.
"""
