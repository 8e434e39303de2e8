"""Fernet token codec shared by export files and Airflow field encryption."""

from .fernet_codec import (
    FernetCodec,
    MIN_TOKEN_LENGTH,
    decode_key,
    generate_key,
    validate_key,
)

__all__ = [
    "FernetCodec",
    "MIN_TOKEN_LENGTH",
    "decode_key",
    "generate_key",
    "validate_key",
]
