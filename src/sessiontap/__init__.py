"""
SessionTap

Capture analytics ingestion traffic through a proxy and replay it later
under new session and user identities to build demo datasets.
"""

__version__ = '1.0.0'
