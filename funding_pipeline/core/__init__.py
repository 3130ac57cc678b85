"""
Core configuration and infrastructure components.
"""
