
import hashlib
import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from sqlalchemy import create_engine, insert

from rulekeeper.index import RulesetIndex
from rulekeeper.storage.database import DatabaseManager
from rulekeeper.storage.models import Base, Ruleset, Target
from rulekeeper.updates.fetcher import RetryingFetcher
from rulekeeper.updates.pipeline import RulesetUpdater, UpdateConfig
from rulekeeper.updates.release import ReleaseBuilder
from rulekeeper.updates.reporter import FailureReporter
from rulekeeper.updates.swapper import DatabaseSwapper
from rulekeeper.updates.verifier import SignatureVerifier

MANIFEST_URL = "https://rulesets.test/update.json"
SIGNATURE_URL = "https://rulesets.test/update.json.sig"
SOURCE_URL = "https://rulesets.test/rulesets.sqlite"
REPORT_URL = "https://reports.test/failure"

OLD_RULESETS = {1: "<ruleset name='Old'/>"}
OLD_TARGETS = [("old.example.com", 1)]

NEW_RULESETS = {
    1: "<ruleset name='Example'/>",
    2: "<ruleset name='Wildcard'/>",
}
NEW_TARGETS = [("example.com", 1), ("www.example.com", 1), ("*.wild.org", 2)]


def build_ruleset_db(
    path: Union[str, Path],
    rulesets: Dict[int, str],
    targets: Iterable[Tuple[str, int]],
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # plain filename connect, so "?" or "#" in the path stay literal
    engine = create_engine("sqlite://", creator=lambda: sqlite3.connect(str(path)))
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        if rulesets:
            conn.execute(
                insert(Ruleset.__table__),
                [{"id": rid, "contents": contents} for rid, contents in rulesets.items()],
            )
        target_rows = [{"host": host, "ruleset_id": rid} for host, rid in targets]
        if target_rows:
            conn.execute(insert(Target.__table__), target_rows)
    engine.dispose()
    return path


def live_rows(db_manager: DatabaseManager):
    with db_manager.engine.connect() as conn:
        rulesets = sorted(conn.exec_driver_sql("SELECT id, contents FROM rulesets").fetchall())
        targets = sorted(conn.exec_driver_sql("SELECT host, ruleset_id FROM targets").fetchall())
    return rulesets, targets


def snapshot_bytes(db_manager: DatabaseManager) -> bytes:
    """Checkpoint and return the raw live database file."""
    db_manager.engine.dispose()
    return Path(db_manager.db_path).read_bytes()


def sha256_file(path: Path) -> str:
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


class FakePublisher:
    """Serves a ruleset release through httpx.MockTransport."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests = []

    def serve(self, url: str, body: bytes = b"", status: int = 200):
        self.routes[url] = lambda request: httpx.Response(status, content=body)

    def serve_handler(self, url: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.routes[url] = handler

    def requested(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def publish(
        self,
        db_path: Path,
        private_key_pem: bytes,
        version: str = "1.0.0.1",
        branch: str = "stable",
        source: str = SOURCE_URL,
        hashfn: str = "sha256",
    ) -> bytes:
        raw = ReleaseBuilder(hashfn=hashfn).build_manifest(db_path, version, branch, source)
        self.publish_raw(raw, private_key_pem)
        self.serve(source, Path(db_path).read_bytes())
        return raw

    def publish_raw(self, raw: bytes, private_key_pem: bytes):
        """Serve arbitrary manifest bytes with a valid signature."""
        self.serve(MANIFEST_URL, raw)
        self.serve(SIGNATURE_URL, ReleaseBuilder.sign_manifest(raw, private_key_pem) + b"\n")


async def no_sleep(delay: float):
    return None


def _keypair():
    private_key = ed25519.Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


@pytest.fixture
def signing_keys():
    return _keypair()


@pytest.fixture
def other_signing_keys():
    return _keypair()


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(db_path=str(tmp_path / "live" / "rulesets.sqlite"), echo=False)
    manager.init_db_sync()
    build_ruleset_db(manager.db_path, OLD_RULESETS, OLD_TARGETS)
    yield manager
    manager.close()


@pytest.fixture
def index(db_manager):
    idx = RulesetIndex(db_manager)
    idx.reload()
    return idx


@pytest.fixture
def new_release_db(tmp_path):
    return build_ruleset_db(tmp_path / "release" / "rulesets.sqlite", NEW_RULESETS, NEW_TARGETS)


@pytest.fixture
def staging_path(tmp_path):
    return tmp_path / "staging" / "new_rulesets.sqlite"


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def make_updater(db_manager, index, publisher, signing_keys, staging_path):
    def factory(
        extension_version: str = "1.0.0",
        ruleset_version: str = "1.0.0.0",
        branch: str = "stable",
        allow_weak_digests: bool = True,
        report_url: str = REPORT_URL,
        max_attempts: int = 3,
        public_key_pem: Optional[str] = None,
    ) -> RulesetUpdater:
        client = publisher.client()
        fetcher = RetryingFetcher(client=client, max_attempts=max_attempts, sleep=no_sleep)

        def config_provider() -> UpdateConfig:
            return UpdateConfig(
                manifest_url=MANIFEST_URL,
                signature_url=SIGNATURE_URL,
                extension_version=extension_version,
                branch=branch,
                ruleset_version=db_manager.get_state("ruleset_version") or ruleset_version,
                staging_path=staging_path,
                allow_weak_digests=allow_weak_digests,
            )

        updater = RulesetUpdater(
            fetcher=fetcher,
            swapper=DatabaseSwapper(db_manager, index),
            config_provider=config_provider,
            signature_verifier=SignatureVerifier(public_key_pem or signing_keys[1]),
            reporter=FailureReporter(client, report_url),
        )
        return updater

    return factory
