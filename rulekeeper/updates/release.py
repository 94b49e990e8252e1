"""
RuleKeeper Release Builder

Publisher-side tooling: builds and signs update.json for a ruleset
database, and generates signing keypairs.
"""

import base64
import json
import logging
import shutil
from pathlib import Path
from typing import Dict, Optional, Union
from urllib.parse import urlparse

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from .manifest import parse_manifest
from .verifier import DigestAlgorithm, IntegrityVerifier

logger = logging.getLogger(__name__)

MANIFEST_NAME = "update.json"
SIGNATURE_NAME = "update.json.sig"


class ReleaseBuilder:

    def __init__(self, hashfn: str = "sha256"):
        self.algorithm = DigestAlgorithm.resolve(hashfn)

    def build_manifest(
        self,
        db_path: Union[str, Path],
        version: str,
        branch: str,
        source: str,
    ) -> bytes:
        """
        Build manifest bytes for a ruleset database.

        The result is parsed back before being returned so a release can
        never be published in a shape clients reject.
        """
        digest = IntegrityVerifier().compute(db_path, self.algorithm)
        manifest = {
            "version": version,
            "branch": branch,
            "source": source,
            "hashfn": self.algorithm.value,
            "hash": digest,
        }
        raw = json.dumps(manifest, indent=2).encode("utf-8")
        parse_manifest(raw)
        return raw

    @staticmethod
    def sign_manifest(raw: bytes, private_key_pem: bytes) -> bytes:
        """Return the base64 signature of manifest bytes."""
        private_key = serialization.load_pem_private_key(private_key_pem, password=None)

        if isinstance(private_key, rsa.RSAPrivateKey):
            signature = private_key.sign(raw, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(private_key, ed25519.Ed25519PrivateKey):
            signature = private_key.sign(raw)
        else:
            raise ValueError(f"Unsupported signing key type: {type(private_key).__name__}")

        return base64.b64encode(signature)

    def write_release(
        self,
        output_dir: Union[str, Path],
        db_path: Union[str, Path],
        version: str,
        branch: str,
        source: str,
        private_key_path: Optional[Union[str, Path]] = None,
    ) -> Dict[str, str]:
        """
        Write update.json, update.json.sig and a copy of the database.

        Returns:
            Paths of the written files
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        raw = self.build_manifest(db_path, version, branch, source)
        manifest_path = output_dir / MANIFEST_NAME
        manifest_path.write_bytes(raw)

        db_copy = output_dir / (Path(urlparse(source).path).name or "rulesets.sqlite")
        shutil.copy2(db_path, db_copy)

        written = {"manifest": str(manifest_path), "database": str(db_copy)}

        if private_key_path:
            signature = self.sign_manifest(raw, Path(private_key_path).read_bytes())
            signature_path = output_dir / SIGNATURE_NAME
            signature_path.write_bytes(signature + b"\n")
            written["signature"] = str(signature_path)
        else:
            logger.warning("No signing key given, release is unsigned")

        logger.info(f"Wrote ruleset release {version} to {output_dir}")
        return written


def generate_keypair(output_dir: Union[str, Path], key_type: str = "ed25519") -> Dict[str, str]:
    """
    Generate a keypair for signing update manifests.

    Args:
        output_dir: Directory to save keys
        key_type: "ed25519" or "rsa"

    Returns:
        Paths to generated keys
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if key_type == "rsa":
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    elif key_type == "ed25519":
        private_key = ed25519.Ed25519PrivateKey.generate()
    else:
        raise ValueError(f"Unknown key type: {key_type}")

    private_path = output_dir / "update_signing_key.pem"
    private_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    private_path.chmod(0o600)

    public_path = output_dir / "update_verify_key.pem"
    public_path.write_bytes(private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))

    logger.info(f"Generated {key_type} keypair in {output_dir}")
    return {
        "private_key": str(private_path),
        "public_key": str(public_path),
    }
