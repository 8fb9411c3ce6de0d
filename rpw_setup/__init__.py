"""
rpw-setup
---------

Provision a Unix account with SSH public-key access, optional sudo privileges,
a hardened SSH daemon configuration and an optional terminal environment.
"""

__version__ = "1.0.0"
