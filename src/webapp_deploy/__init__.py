"""
Deploy, back up and roll back a static page on a single EC2 web host.
"""

__version__ = "0.1.0"
