"""
RuleKeeper Update Manifest

Parsing and gating of the update.json manifest published alongside each
ruleset database release.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple
from urllib.parse import urlparse

from packaging.version import InvalidVersion, Version

from .errors import IncompatibleOrStaleUpdate, InsecureSourceURL, MalformedManifest

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("version", "branch", "source", "hashfn", "hash")

_DOTTED_VERSION = re.compile(r"^\d+(\.\d+)+$")
_HEX = re.compile(r"^[0-9a-fA-F]+$")


@dataclass(frozen=True)
class Manifest:
    """
    A parsed update manifest.

    ``raw`` holds the exact response bytes the fields were parsed from;
    signatures are always checked against it.
    """
    raw: bytes = field(repr=False)
    version: str
    branch: str
    source: str
    hashfn: str
    hash: str

    @property
    def parent_version(self) -> str:
        """Extension version this ruleset release was built for."""
        return self.version.rsplit(".", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "branch": self.branch,
            "source": self.source,
            "hashfn": self.hashfn,
            "hash": self.hash,
        }


def parse_manifest(raw: bytes) -> Manifest:
    """
    Parse and structurally validate manifest bytes.

    Args:
        raw: Response body exactly as received

    Returns:
        Manifest bound to ``raw``

    Raises:
        MalformedManifest: Body is not a JSON object with the required fields
        InsecureSourceURL: ``source`` does not use https
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedManifest(f"Manifest is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise MalformedManifest("Manifest must be a JSON object")

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise MalformedManifest(f"Manifest is missing fields: {missing}")

    for name in REQUIRED_FIELDS:
        value = data[name]
        if not isinstance(value, str) or not value.strip():
            raise MalformedManifest(f"Manifest field '{name}' must be a non-empty string")

    version = data["version"].strip()
    if not _DOTTED_VERSION.match(version):
        raise MalformedManifest(f"Manifest version is not a dotted version: {version!r}")

    digest = data["hash"].strip()
    if not _HEX.match(digest):
        raise MalformedManifest("Manifest hash is not hex encoded")

    source = data["source"].strip()
    require_https(source)

    return Manifest(
        raw=raw,
        version=version,
        branch=data["branch"].strip(),
        source=source,
        hashfn=data["hashfn"].strip().lower(),
        hash=digest,
    )


def require_https(url: str):
    """Raise InsecureSourceURL unless ``url`` is an https URL with a host."""
    parsed = urlparse(url)
    if parsed.scheme.lower() != "https" or not parsed.netloc:
        raise InsecureSourceURL(f"Refusing non-https source URL: {url}")


def _release(value: str) -> Tuple[int, ...]:
    try:
        return Version(value).release
    except InvalidVersion:
        raise ValueError(f"Unparseable version: {value!r}")


def _same_version(left: Tuple[int, ...], right: Tuple[int, ...]) -> bool:
    return Version(".".join(map(str, left))) == Version(".".join(map(str, right)))


def check_version_requirements(
    extension_version: str,
    ruleset_version: str,
    new_version: str,
) -> bool:
    """
    Check that a candidate ruleset release is installable.

    The candidate's parent version (everything before its last component)
    must match the extension version over the same number of leading
    components, and the candidate must be strictly newer than the
    installed ruleset version.

    Examples with extension 1.2.3 and installed ruleset 1.2.0:
        1.2.3.1 -> accepted (parent 1.2.3)
        1.2.5   -> accepted (parent 1.2 matches 1.2)
        1.3.0   -> rejected (parent 1.3 != 1.2)
        1.2.0   -> rejected (not newer)
    """
    candidate = _release(new_version)
    extension = _release(extension_version)
    installed = _release(ruleset_version)

    parent = candidate[:-1]
    if not parent:
        return False

    same_extension = _same_version(parent, extension[:len(parent)])
    newer = Version(new_version) > Version(".".join(map(str, installed)))

    logger.debug(
        f"Version check: extension={extension_version} ruleset={ruleset_version} "
        f"candidate={new_version} compatible={same_extension} newer={newer}"
    )
    return same_extension and newer


def check_gates(manifest: Manifest, extension_version: str, ruleset_version: str, branch: str):
    """
    Apply the version and branch gates.

    Raises:
        IncompatibleOrStaleUpdate: The release is not for us or not newer
    """
    if not check_version_requirements(extension_version, ruleset_version, manifest.version):
        raise IncompatibleOrStaleUpdate(
            f"Ruleset {manifest.version} is incompatible with extension {extension_version} "
            f"or not newer than installed {ruleset_version}",
            manifest_version=manifest.version,
        )

    check_branch(manifest, branch)


def check_branch(manifest: Manifest, branch: str):
    """Raise IncompatibleOrStaleUpdate unless the manifest targets ``branch`` exactly."""
    if manifest.branch != branch:
        raise IncompatibleOrStaleUpdate(
            f"Ruleset {manifest.version} is for branch '{manifest.branch}', not '{branch}'",
            manifest_version=manifest.version,
        )
