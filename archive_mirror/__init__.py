"""
Archive Mirror — Local, periodically refreshed copies of remote archives.
"""

__version__ = "0.1.0"
