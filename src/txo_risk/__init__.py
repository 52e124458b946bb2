"""
TXO multi-leg option strategy risk engine
"""

__version__ = "1.0.0"
