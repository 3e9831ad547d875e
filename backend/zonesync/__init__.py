"""
Zone file synchronization for BIND9
"""

__version__ = "1.0.0"
