"""
RuleKeeper Update Errors

Failure kinds of a ruleset update attempt. Every stage raises one of these
and the pipeline turns it into an UpdateResult.
"""

from typing import Optional


class RulesetUpdateError(Exception):
    """Base class for update attempt failures."""

    kind = "error"
    should_report = False

    def __init__(self, message: str, manifest_version: Optional[str] = None):
        super().__init__(message)
        self.manifest_version = manifest_version


class TransientNetworkFailure(RulesetUpdateError):
    """A fetch failed after exhausting its attempt budget."""

    kind = "transient_network_failure"

    def __init__(self, message: str, url: str = "", attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.url = url
        self.attempts = attempts


class EmptyDownload(TransientNetworkFailure):
    """The artifact request succeeded but carried no data."""

    kind = "empty_download"
    should_report = True


class MalformedManifest(RulesetUpdateError):
    """The manifest could not be parsed or a field has the wrong shape."""

    kind = "malformed_manifest"


class InsecureSourceURL(MalformedManifest):
    """A download URL does not use https."""

    kind = "insecure_source_url"


class IncompatibleOrStaleUpdate(RulesetUpdateError):
    """Version or branch gate rejected the manifest. Nothing to do."""

    kind = "incompatible_or_stale"


class AuthenticityFailure(RulesetUpdateError):
    """The manifest signature did not verify against the embedded key."""

    kind = "authenticity_failure"
    should_report = True


class IntegrityFailure(RulesetUpdateError):
    """The downloaded database does not match the manifest digest."""

    kind = "integrity_failure"
    should_report = True


class UnsupportedDigestAlgorithm(RulesetUpdateError):
    """The manifest names a digest outside the accepted set."""

    kind = "unsupported_digest_algorithm"


class SwapFailure(RulesetUpdateError):
    """Replacing the live ruleset tables failed."""

    kind = "swap_failure"
