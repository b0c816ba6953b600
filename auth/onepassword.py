"""
IMAP password lookup.

The password is taken from the IMAP_PASSWORD environment variable when set,
otherwise read through the 1Password CLI (`op`), either from a secret
reference (IMAP_PASSWORD_OP_REF="op://Vault/Item/Field") or from an item and
field (OP_ITEM, OP_FIELD, optional OP_VAULT). OP_ACCOUNT selects the account.
"""

import logging
import os
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)

PASSWORD_ENV = "IMAP_PASSWORD"
PASSWORD_REF_ENV = "IMAP_PASSWORD_OP_REF"


def _run_op(cmd: List[str], description: str) -> str:
    """
    Execute a 1Password CLI command and return its stdout.

    Raises:
        RuntimeError: If the CLI is missing or the command fails. stderr is
            not included, since it may echo the secret reference.
    """
    try:
        result = subprocess.run(cmd, check=True, text=True, capture_output=True)
    except FileNotFoundError as exc:
        raise RuntimeError(f"1Password CLI not found while {description}.") from exc
    except subprocess.CalledProcessError:
        raise RuntimeError(f"1Password CLI failed while {description}.") from None
    return result.stdout.strip()


def _with_account(cmd: List[str]) -> List[str]:
    account = os.getenv("OP_ACCOUNT")
    if account:
        cmd.extend(["--account", account])
    return cmd


def op_read(ref: str) -> str:
    """Read a secret by reference (e.g. "op://Vault/Item/Field")."""
    return _run_op(_with_account(["op", "read", ref]), f"reading secret {ref}")


def op_item_get(item: str, field: str, vault: Optional[str] = None) -> str:
    """Read one field of a 1Password item."""
    cmd = _with_account(["op", "item", "get", item, f"--field={field}", "--reveal"])
    if vault:
        cmd.extend(["--vault", vault])
    return _run_op(cmd, f"reading field {field} from item {item}")


def load_password() -> Optional[str]:
    """
    Find the IMAP password.

    Returns:
        The password, or None when no source is configured or every
        configured source failed
    """
    value = os.getenv(PASSWORD_ENV)
    if value:
        return value

    ref = os.getenv(PASSWORD_REF_ENV)
    if ref:
        try:
            return op_read(ref)
        except RuntimeError as e:
            logger.warning(f"Failed to read IMAP password from 1Password ref: {e}")

    item = os.getenv("OP_ITEM")
    if item:
        try:
            return op_item_get(item, os.getenv("OP_FIELD", "password"), os.getenv("OP_VAULT"))
        except RuntimeError as e:
            logger.warning(f"Failed to read IMAP password from 1Password item: {e}")

    return None
