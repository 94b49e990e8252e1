"""
RuleKeeper Update Pipeline

Runs one ruleset update attempt end to end:
manifest -> gates -> signature -> artifact -> digest -> swap.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

from ..config.settings import Settings
from ..storage.database import DatabaseManager
from ..utils.helpers import format_bytes, generate_uuid, get_current_timestamp
from .errors import AuthenticityFailure, IncompatibleOrStaleUpdate, RulesetUpdateError
from .fetcher import RetryingFetcher
from .manifest import check_gates, parse_manifest
from .reporter import FailureReporter
from .swapper import RULESET_VERSION_KEY, DatabaseSwapper, ReloadableIndex
from .verifier import DigestAlgorithm, IntegrityVerifier, SignatureVerifier

logger = logging.getLogger(__name__)


class UpdateOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"  # version or branch gate, nothing to do
    IN_PROGRESS = "in_progress"  # another attempt holds the lock
    FAILED = "failed"


class UpdateStage(str, Enum):
    CONFIG = "config"
    FETCH_MANIFEST = "fetch_manifest"
    VALIDATE = "validate"
    FETCH_SIGNATURE = "fetch_signature"
    VERIFY_SIGNATURE = "verify_signature"
    RESOLVE_DIGEST = "resolve_digest"
    FETCH_ARTIFACT = "fetch_artifact"
    VERIFY_INTEGRITY = "verify_integrity"
    SWAP = "swap"
    DONE = "done"


@dataclass(frozen=True)
class UpdateConfig:
    """Configuration snapshot taken once at the start of an attempt."""
    manifest_url: str
    signature_url: str
    extension_version: str
    branch: str
    ruleset_version: str
    staging_path: Path
    allow_weak_digests: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, db_manager: DatabaseManager) -> "UpdateConfig":
        updates = settings.updates
        installed = db_manager.get_state(RULESET_VERSION_KEY) or updates.ruleset_version
        return cls(
            manifest_url=updates.manifest_url,
            signature_url=updates.signature_url,
            extension_version=updates.extension_version,
            branch=updates.branch,
            ruleset_version=installed,
            staging_path=settings.resolve_path(updates.staging_path),
            allow_weak_digests=updates.allow_weak_digests,
        )


@dataclass
class UpdateResult:
    """Outcome of one update attempt."""
    attempt_id: str
    outcome: UpdateOutcome = UpdateOutcome.FAILED
    stage: UpdateStage = UpdateStage.CONFIG
    started_at: Any = field(default_factory=get_current_timestamp)
    finished_at: Any = None
    manifest_version: Optional[str] = None
    error_kind: Optional[str] = None
    message: str = ""
    reported: bool = False
    changes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "outcome": self.outcome.value,
            "stage": self.stage.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "manifest_version": self.manifest_version,
            "error_kind": self.error_kind,
            "message": self.message,
            "reported": self.reported,
            "changes": self.changes,
        }


class RulesetUpdater:
    """
    Drives ruleset update attempts.

    Only one attempt runs at a time; a trigger that arrives while one is
    in flight returns an IN_PROGRESS result without touching anything.
    Stage failures never escape fetch_update().
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        swapper: DatabaseSwapper,
        config_provider: Callable[[], UpdateConfig],
        signature_verifier: Optional[SignatureVerifier] = None,
        integrity_verifier: Optional[IntegrityVerifier] = None,
        reporter: Optional[FailureReporter] = None,
        history_size: int = 50,
    ):
        """
        Initialize updater.

        Args:
            fetcher: Retrying HTTP fetcher
            swapper: Applies verified databases to the live one
            config_provider: Returns a fresh UpdateConfig per attempt
            signature_verifier: Defaults to the embedded publisher key
            integrity_verifier: Digest checker
            reporter: Failure reporter; defaults to an unconfigured one
            history_size: Number of past results kept
        """
        self.fetcher = fetcher
        self.swapper = swapper
        self.config_provider = config_provider
        self.signature_verifier = signature_verifier or SignatureVerifier()
        self.integrity_verifier = integrity_verifier or IntegrityVerifier()
        self.reporter = reporter or FailureReporter(fetcher.client)

        self._lock = asyncio.Lock()
        self._history: Deque[UpdateResult] = deque(maxlen=history_size)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        db_manager: DatabaseManager,
        index: ReloadableIndex,
    ) -> "RulesetUpdater":
        """Wire an updater with the default fetcher, swapper and reporter."""
        updates = settings.updates
        fetcher = RetryingFetcher(
            max_attempts=updates.max_fetch_attempts,
            base_delay=updates.retry_base_delay,
            max_delay=updates.retry_max_delay,
            timeout=updates.request_timeout,
        )
        return cls(
            fetcher=fetcher,
            swapper=DatabaseSwapper(db_manager, index),
            config_provider=lambda: UpdateConfig.from_settings(settings, db_manager),
            reporter=FailureReporter(fetcher.client, updates.failure_report_url),
        )

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def aclose(self):
        await self.fetcher.aclose()

    async def fetch_update(self) -> UpdateResult:
        """
        Run one update attempt.

        Returns:
            The attempt's result; this never raises for stage failures
        """
        result = UpdateResult(attempt_id=generate_uuid())

        if self._lock.locked():
            result.outcome = UpdateOutcome.IN_PROGRESS
            result.message = "Another ruleset update attempt is already running"
            result.finished_at = get_current_timestamp()
            logger.info(result.message)
            return result

        async with self._lock:
            logger.info(f"Starting ruleset update check {result.attempt_id}")
            config: Optional[UpdateConfig] = None
            try:
                config = await asyncio.to_thread(self.config_provider)
                await self._run(result, config)
            except RulesetUpdateError as e:
                await self._handle_failure(result, e)
            except Exception as e:
                result.outcome = UpdateOutcome.FAILED
                result.error_kind = "unexpected_error"
                result.message = str(e)
                logger.exception(f"Ruleset update failed at {result.stage.value}: {e}")
            finally:
                if config is not None:
                    self._discard_staged(config.staging_path)
                result.finished_at = get_current_timestamp()
                self._history.append(result)

        return result

    async def _run(self, result: UpdateResult, config: UpdateConfig):
        result.stage = UpdateStage.FETCH_MANIFEST
        raw = await self.fetcher.get(config.manifest_url)
        logger.info("Fetched update manifest")

        result.stage = UpdateStage.VALIDATE
        manifest = parse_manifest(raw)
        result.manifest_version = manifest.version
        check_gates(manifest, config.extension_version, config.ruleset_version, config.branch)

        result.stage = UpdateStage.FETCH_SIGNATURE
        signature = await self.fetcher.get(config.signature_url)

        result.stage = UpdateStage.VERIFY_SIGNATURE
        if not self.signature_verifier.verify(manifest.raw, signature):
            raise AuthenticityFailure(
                f"Signature over manifest {manifest.version} did not verify",
                manifest_version=manifest.version,
            )
        logger.info("Update manifest signature verified")

        result.stage = UpdateStage.RESOLVE_DIGEST
        algorithm = DigestAlgorithm.resolve(manifest.hashfn, allow_weak=config.allow_weak_digests)

        result.stage = UpdateStage.FETCH_ARTIFACT
        size = await self.fetcher.download(manifest.source, config.staging_path)
        logger.info(f"Staged ruleset database ({format_bytes(size)})")

        result.stage = UpdateStage.VERIFY_INTEGRITY
        await asyncio.to_thread(
            self.integrity_verifier.verify,
            config.staging_path,
            algorithm,
            manifest.hash,
            manifest.version,
        )

        result.stage = UpdateStage.SWAP
        result.changes = await self._swap(config.staging_path, manifest.version)

        result.stage = UpdateStage.DONE
        result.outcome = UpdateOutcome.APPLIED
        result.message = f"Applied ruleset version {manifest.version}"
        logger.info(result.message)

    async def _swap(self, staged_path: Path, version: str) -> Dict[str, Any]:
        """Run the swap in a worker thread; cancellation waits for it to finish."""
        task = asyncio.ensure_future(asyncio.to_thread(self.swapper.apply, staged_path, version))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("Cancellation requested during ruleset swap, waiting for it to finish")
            await asyncio.wait({task})
            raise

    async def _handle_failure(self, result: UpdateResult, error: RulesetUpdateError):
        result.error_kind = error.kind
        result.message = str(error)
        result.manifest_version = result.manifest_version or error.manifest_version

        if isinstance(error, IncompatibleOrStaleUpdate):
            result.outcome = UpdateOutcome.SKIPPED
            logger.info(f"No ruleset update applied: {error}")
            return

        result.outcome = UpdateOutcome.FAILED
        logger.warning(f"Ruleset update aborted at {result.stage.value} ({error.kind}): {error}")

        if error.should_report:
            result.reported = await self.reporter.report(
                error.kind, str(error), result.manifest_version
            )

    def _discard_staged(self, staging_path: Path):
        for path in (staging_path, staging_path.with_name(staging_path.name + ".part")):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Could not remove staged file {path}: {e}")

    def get_update_history(self) -> List[Dict[str, Any]]:
        """Get results of recent attempts, oldest first."""
        return [result.to_dict() for result in self._history]

    def get_status(self) -> Dict[str, Any]:
        last = self._history[-1] if self._history else None
        return {
            "running": self.running,
            "swap_state": self.swapper.state.value,
            "attempts": len(self._history),
            "last_result": last.to_dict() if last else None,
            "reports_sent": self.reporter.sent,
            "reports_unsent": self.reporter.unreported,
        }
