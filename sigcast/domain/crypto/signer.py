"""Segment digests and per-session RSA signatures.

Signatures are RSASSA-PKCS1-v1_5 with SHA-256 computed over the raw digest
bytes, which is what a browser viewer checks with WebCrypto
(`RSASSA-PKCS1-v1_5`, `SHA-256`) after hex-decoding the hash header. Public
keys travel as DER SubjectPublicKeyInfo.
"""

import hashlib
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
DIGEST_SIZE = hashlib.sha256().digest_size


@dataclass(frozen=True)
class KeyPair:
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey


def generate_key_pair(key_size: int = DEFAULT_KEY_SIZE) -> KeyPair:
    private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    return KeyPair(public_key=private_key.public_key(), private_key=private_key)


def digest(data: bytes) -> bytes:
    """SHA-256 of the segment bytes."""
    return hashlib.sha256(data).digest()


def sign(segment_digest: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.sign(segment_digest, padding.PKCS1v15(), hashes.SHA256())


def verify(segment_digest: bytes, signature: bytes, public_key: rsa.RSAPublicKey) -> bool:
    try:
        public_key.verify(signature, segment_digest, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


def export_public_key(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_public_key(der: bytes) -> rsa.RSAPublicKey:
    """Parse a DER SubjectPublicKeyInfo blob.

    Raises:
        ValueError: If the bytes are not a DER encoded RSA public key
    """
    public_key = serialization.load_der_public_key(der)
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError(f"Expected an RSA public key, got {type(public_key).__name__}")
    return public_key
