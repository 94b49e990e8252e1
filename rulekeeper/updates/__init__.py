"""
RuleKeeper Updates Package

Signed, verified ruleset database updates.
"""

from .errors import (
    AuthenticityFailure,
    EmptyDownload,
    IncompatibleOrStaleUpdate,
    InsecureSourceURL,
    IntegrityFailure,
    MalformedManifest,
    RulesetUpdateError,
    SwapFailure,
    TransientNetworkFailure,
    UnsupportedDigestAlgorithm,
)
from .fetcher import RetryingFetcher
from .manifest import Manifest, check_branch, check_gates, check_version_requirements, parse_manifest
from .pipeline import RulesetUpdater, UpdateConfig, UpdateOutcome, UpdateResult, UpdateStage
from .reporter import FailureReporter
from .scheduler import UpdateScheduler
from .swapper import DatabaseSwapper, SwapState
from .verifier import DigestAlgorithm, IntegrityVerifier, SignatureVerifier

__all__ = [
    "AuthenticityFailure",
    "EmptyDownload",
    "IncompatibleOrStaleUpdate",
    "InsecureSourceURL",
    "IntegrityFailure",
    "MalformedManifest",
    "RulesetUpdateError",
    "SwapFailure",
    "TransientNetworkFailure",
    "UnsupportedDigestAlgorithm",
    "RetryingFetcher",
    "Manifest",
    "check_branch",
    "check_gates",
    "check_version_requirements",
    "parse_manifest",
    "RulesetUpdater",
    "UpdateConfig",
    "UpdateOutcome",
    "UpdateResult",
    "UpdateStage",
    "FailureReporter",
    "UpdateScheduler",
    "DatabaseSwapper",
    "SwapState",
    "DigestAlgorithm",
    "IntegrityVerifier",
    "SignatureVerifier",
]
