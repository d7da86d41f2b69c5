"""
unit09

Asynchronous job pipeline over a ledger of repositories, modules and forks.
"""

import importlib.metadata

__version__ = importlib.metadata.version("unit09")

from .errors import (
    AlreadyExistsError,
    InvalidKeyError,
    NoHandlerError,
    NotFoundError,
    StageFailure,
    TransportError,
    Unit09Error,
    ValidationError,
)

__all__ = [
    "AlreadyExistsError",
    "InvalidKeyError",
    "NoHandlerError",
    "NotFoundError",
    "StageFailure",
    "TransportError",
    "Unit09Error",
    "ValidationError",
]
