"""
RuleKeeper Update Verifier

Cryptographic verification of ruleset updates: the detached manifest
signature and the digest of the downloaded database.
"""

import base64
import binascii
import hashlib
import hmac
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from .errors import IntegrityFailure, UnsupportedDigestAlgorithm

logger = logging.getLogger(__name__)

# Publisher key used to verify update.json signatures. Rotating it
# requires a new build.
RULESET_UPDATE_KEY = """-----BEGIN PUBLIC KEY-----
MIIBIjANBgkqhkiG9w0BAQEFAAOCAQ8AMIIBCgKCAQEA7wJz/Ekn4loB+GX/TnOb
To/5J0/aq1hBl+xeSyCUX/fggjju5jnRnbnQx10OaZ655Yft4Cs2IfdIh95NYsN+
gfi6HVesy/Q9G72BjhpW6+gTlkW9vW56xwjv+Cpi5/20SKbvMZCMXTvR50HqLaLi
OeLyAOQv06FKlyF5kbgQwpayExii75KFJL3HlH5+mZfNfKElNK9Oyiig7sqnVTOd
ovNCFnW8zom2fS3YyODaFvPUSmo1Yd7Mr0xWjE5rAV7k70aZlR1NEze/Tfcf42LE
hY5XkflczIWh+cse/v/sbZadS9jxbD2SgEJuLatF5zupmd0acvj1II8do2RE95FQ
CQIDAQAB
-----END PUBLIC KEY-----
"""

PublicKey = Union[rsa.RSAPublicKey, ed25519.Ed25519PublicKey]


class SignatureVerifier:
    """
    Verifies detached signatures over raw manifest bytes.

    RSA keys are checked with PKCS#1 v1.5 over SHA-256, Ed25519 keys natively.
    """

    def __init__(self, public_key_pem: str = RULESET_UPDATE_KEY):
        """
        Initialize verifier.

        Args:
            public_key_pem: PEM encoded SubjectPublicKeyInfo
        """
        key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        if not isinstance(key, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
            raise ValueError(f"Unsupported signing key type: {type(key).__name__}")
        self._public_key: PublicKey = key

    @property
    def key_type(self) -> str:
        return "rsa" if isinstance(self._public_key, rsa.RSAPublicKey) else "ed25519"

    def verify(self, data: bytes, signature: Union[str, bytes]) -> bool:
        """
        Verify a base64 signature over ``data``.

        Args:
            data: Manifest bytes exactly as received
            signature: Base64 signature text; whitespace and line breaks are ignored

        Returns:
            True only if the signature is valid for the embedded key
        """
        if isinstance(signature, bytes):
            try:
                signature = signature.decode("ascii")
            except UnicodeDecodeError:
                logger.warning("Update signature is not ASCII text")
                return False

        try:
            sig_bytes = base64.b64decode("".join(signature.split()), validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Update signature is not valid base64")
            return False

        try:
            if isinstance(self._public_key, rsa.RSAPublicKey):
                self._public_key.verify(sig_bytes, data, padding.PKCS1v15(), hashes.SHA256())
            else:
                self._public_key.verify(sig_bytes, data)
        except InvalidSignature:
            return False

        return True


class DigestAlgorithm(str, Enum):
    """Digest algorithms a manifest may name for the database file."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def is_weak(self) -> bool:
        return self in (DigestAlgorithm.MD5, DigestAlgorithm.SHA1)

    def new(self):
        return _CONSTRUCTORS[self]()

    @classmethod
    def resolve(cls, name: str, allow_weak: bool = True) -> "DigestAlgorithm":
        """
        Map a manifest ``hashfn`` onto the accepted set.

        Raises:
            UnsupportedDigestAlgorithm: Unknown name, or a weak one when not allowed
        """
        try:
            algorithm = cls(name.strip().lower())
        except ValueError:
            raise UnsupportedDigestAlgorithm(f"Unsupported digest algorithm: {name!r}")

        if algorithm.is_weak:
            if not allow_weak:
                raise UnsupportedDigestAlgorithm(
                    f"Weak digest algorithm {algorithm.value} is not allowed"
                )
            logger.warning(
                f"Manifest uses weak digest algorithm {algorithm.value}; "
                "publisher should move to sha256 or stronger"
            )

        return algorithm


_CONSTRUCTORS = {
    DigestAlgorithm.MD5: hashlib.md5,
    DigestAlgorithm.SHA1: hashlib.sha1,
    DigestAlgorithm.SHA256: hashlib.sha256,
    DigestAlgorithm.SHA384: hashlib.sha384,
    DigestAlgorithm.SHA512: hashlib.sha512,
}


class IntegrityVerifier:
    """Checks a staged database file against the manifest digest."""

    CHUNK_SIZE = 65536

    def compute(self, path: Union[str, Path], algorithm: DigestAlgorithm) -> str:
        """Compute the hex digest of a file."""
        hasher = algorithm.new()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(self.CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def verify(
        self,
        path: Union[str, Path],
        algorithm: DigestAlgorithm,
        expected: str,
        manifest_version: Optional[str] = None,
    ) -> str:
        """
        Verify the file digest.

        Returns:
            The computed hex digest

        Raises:
            IntegrityFailure: Digest differs from ``expected``
        """
        actual = self.compute(path, algorithm)

        if not hmac.compare_digest(actual.lower(), expected.strip().lower()):
            raise IntegrityFailure(
                f"{algorithm.value} digest of downloaded database does not match manifest",
                manifest_version=manifest_version,
            )

        logger.info(f"Database file {algorithm.value} digest matches manifest")
        return actual
