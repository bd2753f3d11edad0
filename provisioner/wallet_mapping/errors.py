from __future__ import annotations

from enum import Enum
from typing import Optional


class MappingErrorCode(str, Enum):
    # Caller-facing failure taxonomy
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    NOT_PROVISIONED = "NOT_PROVISIONED"
    STORE_FAILURE = "STORE_FAILURE"
    ISSUER_FAILURE = "ISSUER_FAILURE"


class MappingError(Exception):
    """
    Base for every failure surfaced by the provisioning core.

    `code` is stable and safe to hand to callers; `message` is human-readable.
    """

    code: MappingErrorCode = MappingErrorCode.INVALID_REQUEST

    def __init__(self, message: str, *, identity: Optional[str] = None, chain_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.identity = identity
        self.chain_id = chain_id

    def to_dict(self) -> dict:
        out = {"ok": False, "error": self.code.value, "message": self.message}
        if self.chain_id is not None:
            out["chain_id"] = self.chain_id
        return out


class InvalidRequest(MappingError):
    """Malformed provisioning request (e.g. empty chain set). Never mutates state."""
    code = MappingErrorCode.INVALID_REQUEST


class InvalidAddress(MappingError):
    """Caller-supplied address fails the EVM address syntax. Never mutates state."""
    code = MappingErrorCode.INVALID_ADDRESS


class NotProvisioned(MappingError):
    """Override attempted before the identity has a canonical address."""
    code = MappingErrorCode.NOT_PROVISIONED


class StoreFailure(MappingError):
    """The mapping store was unreachable or misbehaved."""
    code = MappingErrorCode.STORE_FAILURE


class IssuerFailure(MappingError):
    """The address issuer failed or returned a malformed address."""
    code = MappingErrorCode.ISSUER_FAILURE
