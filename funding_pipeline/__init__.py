"""
Crypto funding confirmation and reward disbursement pipeline.
"""

__version__ = "0.1.0"
