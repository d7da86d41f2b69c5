"""
Deterministic addressing for ledger records.

Every record lives at ``derive(namespace, natural_key)``. The digest covers a
length-prefixed namespace tag followed by the key bytes, so two namespaces
never produce the same address for the same key. Singleton records
(config, global metrics, global lifecycle) derive from the namespace alone.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..entities.primitives import generate_key
from ..errors import InvalidKeyError

KEY_LENGTH = 32

NaturalKey = Union[str, bytes]


class Namespace(str, Enum):
    """Address spaces, one per record kind."""

    CONFIG = "config"
    REPO = "repo"
    MODULE = "module"
    FORK = "fork"
    METRICS = "metrics"
    LIFECYCLE = "lifecycle"
    REPO_LIFECYCLE = "repo-lifecycle"
    MODULE_LIFECYCLE = "module-lifecycle"
    FORK_LIFECYCLE = "fork-lifecycle"
    REPO_METRICS = "repo-metrics"
    MODULE_VERSION = "module-version"
    MODULE_LINK = "module-link"


@dataclass(frozen=True)
class Address:
    """A storage location: the namespace it belongs to plus a hex digest."""

    namespace: Namespace
    value: str

    def __str__(self) -> str:
        return self.value


def key_bytes(natural_key: NaturalKey) -> bytes:
    """Decode a natural key, raising InvalidKeyError when malformed."""
    if isinstance(natural_key, bytes):
        raw = natural_key
    elif isinstance(natural_key, str):
        try:
            raw = bytes.fromhex(natural_key)
        except ValueError as e:
            raise InvalidKeyError(
                f"Key is not valid hex: {natural_key!r}", {"key": natural_key}
            ) from e
    else:
        raise InvalidKeyError(
            f"Unsupported key type: {type(natural_key).__name__}"
        )

    if len(raw) != KEY_LENGTH:
        raise InvalidKeyError(
            f"Key must be {KEY_LENGTH} bytes, got {len(raw)}",
            {"length": len(raw)},
        )
    return raw


def is_valid_key(natural_key: NaturalKey) -> bool:
    try:
        key_bytes(natural_key)
    except InvalidKeyError:
        return False
    return True


def compound_key(*parts: Union[str, int, bytes]) -> bytes:
    """Fold several components into one 32-byte key.

    Used by records addressed by more than one natural key, such as a module
    version (module key plus version) or a module-repo link.
    """
    digest = hashlib.sha256()
    for part in parts:
        if isinstance(part, int):
            part = str(part)
        if isinstance(part, str):
            part = part.encode("utf-8")
        digest.update(len(part).to_bytes(4, "big"))
        digest.update(part)
    return digest.digest()


def derive(
    namespace: Union[Namespace, str], natural_key: Optional[NaturalKey] = None
) -> Address:
    """Map a namespace tag and a natural key to an address.

    Args:
        namespace: Address space of the record
        natural_key: 32-byte key (bytes or hex). None for singleton records.

    Raises:
        InvalidKeyError: If the key has the wrong length or format
    """
    namespace = Namespace(namespace)
    tag = namespace.value.encode("utf-8")

    digest = hashlib.sha256()
    digest.update(len(tag).to_bytes(2, "big"))
    digest.update(tag)
    if natural_key is not None:
        digest.update(key_bytes(natural_key))

    return Address(namespace=namespace, value=digest.hexdigest())


__all__ = [
    "Address",
    "KEY_LENGTH",
    "Namespace",
    "compound_key",
    "derive",
    "generate_key",
    "is_valid_key",
    "key_bytes",
]
