"""
Credential loading for the IMAP session.

Reads the password from the environment or the 1Password CLI.
"""

from auth.onepassword import load_password

__all__ = [
    "load_password",
]
