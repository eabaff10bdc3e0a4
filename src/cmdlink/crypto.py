"""
Cmdlink - RSA cryptographic operations.

This module keeps all RSA details in one place:
- Key generation (RSA, public exponent 65537)
- PEM import/export of public and private keys
- RSA-OAEP (SHA-256) encryption of whole frames

Frames are encrypted directly with RSA, so a frame can never exceed one
block: key_size_bytes - 2 * 32 - 2 bytes. Longer payloads raise
PayloadTooLargeError instead of being truncated.

All primitives come from the cryptography library (Apache 2.0/BSD License).
"""

import hashlib
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .constants import OAEP_HASH_SIZE, RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT
from .errors import (
    BadKeyMaterialError,
    CryptoError,
    ErrorCode,
    KeyUnavailableError,
    PayloadTooLargeError,
)

PathLike = Union[str, Path]


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


class KeyPair:
    """
    An RSA key pair.

    The server loads one from PEM files at startup; clients generate a
    fresh one for every connection and never persist it.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key
        self.public_key = private_key.public_key()

    @classmethod
    def generate(cls, key_size: int = RSA_KEY_SIZE) -> "KeyPair":
        """Generate a fresh key pair."""
        try:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size
            )
        except ValueError as e:
            raise CryptoError(
                ErrorCode.E104_KEY_GENERATION_FAILED,
                f"Failed to generate RSA key: {e}",
                {"key_size": key_size},
            )
        return cls(private_key)

    @property
    def key_size(self) -> int:
        return self.private_key.key_size

    @property
    def block_size(self) -> int:
        """Ciphertext length in bytes for this key."""
        return (self.private_key.key_size + 7) // 8

    def public_pem(self) -> str:
        return export_public_key_pem(self.public_key)

    def private_pem(self) -> str:
        return export_private_key_pem(self.private_key)


def export_public_key_pem(public_key: rsa.RSAPublicKey) -> str:
    """Export a public key as SubjectPublicKeyInfo PEM text."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def export_private_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """
    Export private key in PKCS#8 (unencrypted) form.
    Store safely if you write this to disk; this is the raw key.
    """
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def load_public_key_pem(pem: Union[str, bytes]) -> rsa.RSAPublicKey:
    """
    Import an RSA public key from PEM text.

    Both SubjectPublicKeyInfo ("BEGIN PUBLIC KEY") and PKCS#1
    ("BEGIN RSA PUBLIC KEY") encodings are accepted.

    Raises:
        BadKeyMaterialError: If the text is not an RSA public key
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise BadKeyMaterialError(f"Failed to import public key: {e}", {"error": str(e)})

    if not isinstance(key, rsa.RSAPublicKey):
        raise BadKeyMaterialError(
            "Public key is not an RSA key", {"type": type(key).__name__}
        )
    return key


def load_private_key_pem(pem: Union[str, bytes]) -> rsa.RSAPrivateKey:
    """
    Import an unencrypted RSA private key from PEM text (PKCS#8 or PKCS#1).

    Raises:
        BadKeyMaterialError: If the text is not an RSA private key
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise BadKeyMaterialError(f"Failed to import private key: {e}", {"error": str(e)})

    if not isinstance(key, rsa.RSAPrivateKey):
        raise BadKeyMaterialError(
            "Private key is not an RSA key", {"type": type(key).__name__}
        )
    return key


def load_keypair(public_path: PathLike, private_path: PathLike) -> KeyPair:
    """
    Load a persisted key pair from two PEM files.

    The public file is checked against the private key so a mismatched pair
    fails at startup instead of at the first message.

    Raises:
        BadKeyMaterialError: If a file is missing, unreadable or mismatched
    """
    try:
        public_text = Path(public_path).read_text(encoding="utf-8")
        private_text = Path(private_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise BadKeyMaterialError(
            f"Failed to read key files: {e}",
            {"public_path": str(public_path), "private_path": str(private_path)},
        )

    private_key = load_private_key_pem(private_text)
    public_key = load_public_key_pem(public_text)

    if public_key.public_numbers() != private_key.public_key().public_numbers():
        raise BadKeyMaterialError(
            "Public key does not match private key",
            {"public_path": str(public_path), "private_path": str(private_path)},
        )

    return KeyPair(private_key)


def save_keypair(keypair: KeyPair, public_path: PathLike, private_path: PathLike) -> None:
    """Write a key pair as two PEM files. The private file is made owner-only."""
    public_path = Path(public_path)
    private_path = Path(private_path)
    public_path.parent.mkdir(parents=True, exist_ok=True)
    private_path.parent.mkdir(parents=True, exist_ok=True)

    public_path.write_text(keypair.public_pem(), encoding="utf-8")
    private_path.write_text(keypair.private_pem(), encoding="utf-8")
    private_path.chmod(0o600)


def max_payload_size(key: Union[rsa.RSAPublicKey, rsa.RSAPrivateKey]) -> int:
    """Largest plaintext (bytes) one OAEP-SHA256 block can carry for this key."""
    return (key.key_size + 7) // 8 - 2 * OAEP_HASH_SIZE - 2


def encrypt(public_key: Optional[rsa.RSAPublicKey], plaintext: bytes) -> bytes:
    """
    Encrypt bytes with RSA-OAEP(SHA-256).

    Raises:
        KeyUnavailableError: If public_key is None
        PayloadTooLargeError: If plaintext does not fit in one block
    """
    if public_key is None:
        raise KeyUnavailableError("Recipient public key has not been received")

    limit = max_payload_size(public_key)
    if len(plaintext) > limit:
        raise PayloadTooLargeError(len(plaintext), limit)

    try:
        return public_key.encrypt(plaintext, _oaep())
    except ValueError as e:
        raise CryptoError(ErrorCode.E101_ENCRYPTION_FAILED, f"Encryption failed: {e}")


def decrypt(private_key: Optional[rsa.RSAPrivateKey], ciphertext: bytes) -> bytes:
    """
    Reverse of encrypt().

    Raises:
        KeyUnavailableError: If private_key is None
        CryptoError: If the block cannot be decrypted with this key
    """
    if private_key is None:
        raise KeyUnavailableError("Local private key is not available")

    try:
        return private_key.decrypt(bytes(ciphertext), _oaep())
    except ValueError as e:
        raise CryptoError(
            ErrorCode.E102_DECRYPTION_FAILED,
            f"Decryption failed: {e}",
            {"size": len(ciphertext)},
        )


def sha256(text: str) -> bytes:
    """SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).digest()


def fingerprint(public_key: rsa.RSAPublicKey) -> str:
    """Short hex fingerprint of a public key, safe to log."""
    return hashlib.sha256(export_public_key_pem(public_key).encode("ascii")).hexdigest()[:16]
