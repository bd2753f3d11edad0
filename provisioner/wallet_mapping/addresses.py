from __future__ import annotations

import re
from typing import Any

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_evm_address(value: Any) -> bool:
    """`0x` + 40 hex characters. Checksum casing is accepted but not verified."""
    if not isinstance(value, str):
        return False
    return bool(_EVM_ADDRESS_RE.match(value))


def describe_address(value: Any) -> str:
    # Short form for error messages; addresses are not secret but junk input can be long.
    text = str(value)
    if len(text) > 64:
        return text[:61] + "..."
    return text
