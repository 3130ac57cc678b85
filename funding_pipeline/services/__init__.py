"""
Business logic services for the funding pipeline.
"""
