"""
beatport-bridge: a client for a local track download service.
"""

__version__ = "0.3.0"
