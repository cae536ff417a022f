"""
Twokaj: offline-first bartering marketplace.
"""
__version__ = "1.0.0"
