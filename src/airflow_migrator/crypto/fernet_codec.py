"""Fernet token codec.

Byte-compatible with the Fernet specification used by Apache Airflow
(and by ``cryptography.fernet``) to protect connection passwords and extras:

    token = base64url( 0x80 || timestamp(8, big-endian) || iv(16)
                       || AES-128-CBC(PKCS7(plaintext)) || HMAC-SHA256(32) )

The 32-byte key is split into a 16-byte signing key (first half) and a
16-byte encryption key (second half). The HMAC covers everything before it
and is always verified before any decryption happens.

Keys and tokens are accepted in URL-safe or standard base64 so files produced
by tools using either alphabet interoperate.
"""

import base64
import binascii
import os
import struct
import time
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.hmac import HMAC

from ..exceptions import (
    InvalidKeyError,
    InvalidSignatureError,
    InvalidTokenError,
    TokenExpiredError,
)

# ── Constants ────────────────────────────────────────────────────────

FERNET_VERSION = 0x80
KEY_LENGTH = 32
SIGNING_KEY_LENGTH = 16
TIMESTAMP_LENGTH = 8
IV_LENGTH = 16
HMAC_LENGTH = 32
BLOCK_SIZE = 16  # AES block size in bytes

# version + timestamp + iv + one cipher block + hmac = 73 bytes
MIN_TOKEN_LENGTH = 1 + TIMESTAMP_LENGTH + IV_LENGTH + BLOCK_SIZE + HMAC_LENGTH

_HEADER_LENGTH = 1 + TIMESTAMP_LENGTH + IV_LENGTH
MAX_CLOCK_SKEW = 60  # seconds a token may claim to be from the future under a TTL

_URLSAFE_TO_STANDARD = bytes.maketrans(b"-_", b"+/")


def _b64decode(data: Union[str, bytes]) -> bytes:
    """Strictly decode URL-safe or standard base64 (padding required)."""
    if isinstance(data, str):
        try:
            data = data.encode("ascii")
        except UnicodeEncodeError:
            raise binascii.Error("non-ASCII characters in base64 input")
    return base64.b64decode(data.translate(_URLSAFE_TO_STANDARD), validate=True)


# ── Key Management ───────────────────────────────────────────────────


def generate_key() -> str:
    """Generate a new random 32-byte Fernet key (URL-safe base64, padded)."""
    return base64.urlsafe_b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def decode_key(key: Union[str, bytes]) -> bytes:
    """Decode a Fernet key to its 32 raw bytes.

    Raises:
        InvalidKeyError: If the key is not valid base64 or not 32 bytes.
    """
    if not key:
        raise InvalidKeyError()
    try:
        raw = _b64decode(key)
    except (binascii.Error, ValueError):
        raise InvalidKeyError()
    if len(raw) != KEY_LENGTH:
        raise InvalidKeyError()
    return raw


def validate_key(key: Union[str, bytes]) -> bool:
    """Return True if ``key`` decodes to exactly 32 bytes."""
    try:
        decode_key(key)
    except InvalidKeyError:
        return False
    return True


# ── Codec ────────────────────────────────────────────────────────────


class FernetCodec:
    """
    Encrypts and decrypts Fernet tokens under a single key.

    Instances hold only the two derived sub-keys and are safe to share
    between threads.

    Usage:
        codec = FernetCodec(generate_key())
        token = codec.encrypt_string("s3cret")
        assert codec.decrypt_string(token) == "s3cret"
    """

    def __init__(self, key: Union[str, bytes]):
        raw = decode_key(key)
        self._signing_key = raw[:SIGNING_KEY_LENGTH]
        self._encryption_key = raw[SIGNING_KEY_LENGTH:]

    def encrypt(self, data: bytes) -> str:
        """Encrypt ``data`` and return a token stamped with the current time."""
        return self.encrypt_at_time(data, int(time.time()))

    def encrypt_at_time(self, data: bytes, current_time: int) -> str:
        """Encrypt ``data`` with an explicit Unix timestamp."""
        return self._encrypt_from_parts(data, current_time, os.urandom(IV_LENGTH))

    def _encrypt_from_parts(self, data: bytes, current_time: int, iv: bytes) -> str:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("data must be bytes")

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(bytes(data)) + padder.finalize()

        encryptor = Cipher(
            algorithms.AES(self._encryption_key), modes.CBC(iv)
        ).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        basic_parts = (
            bytes([FERNET_VERSION])
            + struct.pack(">Q", current_time)
            + iv
            + ciphertext
        )

        h = HMAC(self._signing_key, hashes.SHA256())
        h.update(basic_parts)
        return base64.urlsafe_b64encode(basic_parts + h.finalize()).decode("ascii")

    def decrypt(self, token: Union[str, bytes], ttl: Optional[int] = None) -> bytes:
        """
        Verify and decrypt a token.

        Args:
            token: Fernet token (URL-safe or standard base64)
            ttl: Optional maximum token age in seconds

        Returns:
            The original plaintext bytes

        Raises:
            InvalidTokenError: Malformed token, wrong version, bad padding
            InvalidSignatureError: HMAC mismatch (wrong key or tampering)
            TokenExpiredError: Token older than ``ttl``
        """
        data = self._decode_token(token)
        self._verify_signature(data)

        if ttl is not None:
            timestamp = struct.unpack(">Q", data[1:_HEADER_LENGTH - IV_LENGTH])[0]
            current_time = int(time.time())
            if timestamp + ttl < current_time:
                raise TokenExpiredError()
            if current_time + MAX_CLOCK_SKEW < timestamp:
                raise TokenExpiredError("fernet token timestamp is in the future")

        iv = data[1 + TIMESTAMP_LENGTH:_HEADER_LENGTH]
        ciphertext = data[_HEADER_LENGTH:-HMAC_LENGTH]
        if len(ciphertext) % BLOCK_SIZE != 0:
            raise InvalidTokenError()

        decryptor = Cipher(
            algorithms.AES(self._encryption_key), modes.CBC(iv)
        ).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise InvalidTokenError()

    def encrypt_string(self, plaintext: str) -> str:
        """Encrypt a UTF-8 string."""
        return self.encrypt(plaintext.encode("utf-8"))

    def decrypt_string(self, token: Union[str, bytes], ttl: Optional[int] = None) -> str:
        """Decrypt a token whose plaintext is a UTF-8 string."""
        plaintext = self.decrypt(token, ttl=ttl)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidTokenError("fernet token plaintext is not valid UTF-8")

    def extract_timestamp(self, token: Union[str, bytes]) -> int:
        """Return the creation timestamp of an authentic token."""
        data = self._decode_token(token)
        self._verify_signature(data)
        return struct.unpack(">Q", data[1:_HEADER_LENGTH - IV_LENGTH])[0]

    @staticmethod
    def _decode_token(token: Union[str, bytes]) -> bytes:
        if not isinstance(token, (str, bytes)):
            raise TypeError("token must be str or bytes")
        try:
            data = _b64decode(token)
        except (binascii.Error, ValueError):
            raise InvalidTokenError()
        if len(data) < MIN_TOKEN_LENGTH or data[0] != FERNET_VERSION:
            raise InvalidTokenError()
        return data

    def _verify_signature(self, data: bytes) -> None:
        h = HMAC(self._signing_key, hashes.SHA256())
        h.update(data[:-HMAC_LENGTH])
        try:
            h.verify(data[-HMAC_LENGTH:])
        except InvalidSignature:
            raise InvalidSignatureError()
