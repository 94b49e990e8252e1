
import asyncio
import json

import httpx
import pytest

from rulekeeper.updates.pipeline import UpdateOutcome, UpdateStage
from rulekeeper.updates.swapper import RULESET_VERSION_KEY

from .conftest import (
    MANIFEST_URL,
    NEW_RULESETS,
    NEW_TARGETS,
    OLD_RULESETS,
    OLD_TARGETS,
    REPORT_URL,
    SIGNATURE_URL,
    SOURCE_URL,
    build_ruleset_db,
    live_rows,
    snapshot_bytes,
)

OLD_ROWS = (sorted(OLD_RULESETS.items()), sorted(OLD_TARGETS))
NEW_ROWS = (sorted(NEW_RULESETS.items()), sorted(NEW_TARGETS))


@pytest.fixture
def reports(publisher):
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(204)

    publisher.serve_handler(REPORT_URL, handler)
    return received


def assert_staging_clean(staging_path):
    assert not staging_path.exists()
    assert not staging_path.with_name(staging_path.name + ".part").exists()


class TestApply:
    """Tests for successful update attempts."""

    @pytest.mark.asyncio
    async def test_valid_update_applied(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager, index, staging_path
    ):
        publisher.publish(new_release_db, signing_keys[0], version="1.0.0.1")
        updater = make_updater()

        result = await updater.fetch_update()

        assert result.outcome == UpdateOutcome.APPLIED
        assert result.stage == UpdateStage.DONE
        assert result.manifest_version == "1.0.0.1"
        assert result.changes == {"rulesets": 2, "targets": 3}
        assert live_rows(db_manager) == NEW_ROWS
        assert db_manager.get_state(RULESET_VERSION_KEY) == "1.0.0.1"
        assert index.rulesets_for_host("a.wild.org") == [2]
        assert_staging_clean(staging_path)

    @pytest.mark.asyncio
    async def test_second_attempt_is_stale(self, make_updater, publisher, signing_keys, new_release_db):
        publisher.publish(new_release_db, signing_keys[0], version="1.0.0.1")
        updater = make_updater()

        first = await updater.fetch_update()
        second = await updater.fetch_update()

        assert first.outcome == UpdateOutcome.APPLIED
        assert second.outcome == UpdateOutcome.SKIPPED
        assert second.error_kind == "incompatible_or_stale"
        assert publisher.requested(SOURCE_URL) == 1

    @pytest.mark.asyncio
    async def test_concurrent_trigger_reports_in_progress(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager
    ):
        publisher.publish(new_release_db, signing_keys[0], version="1.0.0.1")
        updater = make_updater()

        results = await asyncio.gather(updater.fetch_update(), updater.fetch_update())

        outcomes = sorted(result.outcome.value for result in results)
        assert outcomes == ["applied", "in_progress"]
        assert publisher.requested(MANIFEST_URL) == 1
        assert live_rows(db_manager) == NEW_ROWS

    @pytest.mark.asyncio
    async def test_weak_digest_accepted_when_allowed(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager
    ):
        publisher.publish(new_release_db, signing_keys[0], hashfn="sha1")

        result = await make_updater(allow_weak_digests=True).fetch_update()

        assert result.outcome == UpdateOutcome.APPLIED
        assert live_rows(db_manager) == NEW_ROWS

    @pytest.mark.asyncio
    async def test_history(self, make_updater, publisher, signing_keys, new_release_db):
        publisher.publish(new_release_db, signing_keys[0])
        updater = make_updater()

        await updater.fetch_update()
        await updater.fetch_update()

        history = updater.get_update_history()
        assert [entry["outcome"] for entry in history] == ["applied", "skipped"]
        assert updater.get_status()["last_result"]["outcome"] == "skipped"
        assert updater.get_status()["running"] is False


class TestGates:
    """Tests for releases skipped before download."""

    @pytest.mark.asyncio
    async def test_older_version_skipped(self, make_updater, publisher, signing_keys, new_release_db, db_manager):
        publisher.publish(new_release_db, signing_keys[0], version="1.0.0.0")

        result = await make_updater(ruleset_version="1.0.0.0").fetch_update()

        assert result.outcome == UpdateOutcome.SKIPPED
        assert publisher.requested(SIGNATURE_URL) == 0
        assert publisher.requested(SOURCE_URL) == 0
        assert live_rows(db_manager) == OLD_ROWS

    @pytest.mark.asyncio
    async def test_other_extension_line_skipped(self, make_updater, publisher, signing_keys, new_release_db):
        publisher.publish(new_release_db, signing_keys[0], version="1.1.0.1")

        result = await make_updater(extension_version="1.0.0").fetch_update()

        assert result.outcome == UpdateOutcome.SKIPPED
        assert publisher.requested(SIGNATURE_URL) == 0

    @pytest.mark.asyncio
    async def test_branch_mismatch_skipped(self, make_updater, publisher, signing_keys, new_release_db, reports):
        publisher.publish(new_release_db, signing_keys[0], branch="beta")

        result = await make_updater(branch="stable").fetch_update()

        assert result.outcome == UpdateOutcome.SKIPPED
        assert publisher.requested(SIGNATURE_URL) == 0
        assert reports == []


class TestAuthenticity:
    """Tests for manifest signature failures."""

    @pytest.mark.asyncio
    async def test_wrong_key_leaves_database_untouched(
        self, make_updater, publisher, other_signing_keys, new_release_db, db_manager, reports, staging_path
    ):
        publisher.publish(new_release_db, other_signing_keys[0])
        before = snapshot_bytes(db_manager)

        result = await make_updater().fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "authenticity_failure"
        assert result.stage == UpdateStage.VERIFY_SIGNATURE
        assert publisher.requested(SOURCE_URL) == 0
        assert snapshot_bytes(db_manager) == before
        assert result.reported is True
        assert reports[0]["kind"] == "authenticity_failure"
        assert reports[0]["manifest_version"] == "1.0.0.1"
        assert_staging_clean(staging_path)

    @pytest.mark.asyncio
    async def test_manifest_modified_after_signing(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager, reports
    ):
        raw = publisher.publish(new_release_db, signing_keys[0])
        publisher.serve(MANIFEST_URL, json.dumps(json.loads(raw)).encode("utf-8"))

        result = await make_updater().fetch_update()

        assert result.error_kind == "authenticity_failure"
        assert live_rows(db_manager) == OLD_ROWS

    @pytest.mark.asyncio
    async def test_missing_signature(self, make_updater, publisher, signing_keys, new_release_db, db_manager):
        publisher.publish(new_release_db, signing_keys[0])
        publisher.serve(SIGNATURE_URL, status=404)

        result = await make_updater().fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "transient_network_failure"
        assert result.stage == UpdateStage.FETCH_SIGNATURE
        assert live_rows(db_manager) == OLD_ROWS


class TestIntegrity:
    """Tests for digest, source and swap failures."""

    @pytest.mark.asyncio
    async def test_digest_mismatch(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager, reports, staging_path
    ):
        publisher.publish(new_release_db, signing_keys[0])
        publisher.serve(SOURCE_URL, new_release_db.read_bytes() + b"\x00")
        before = snapshot_bytes(db_manager)

        result = await make_updater().fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "integrity_failure"
        assert snapshot_bytes(db_manager) == before
        assert db_manager.get_state(RULESET_VERSION_KEY) is None
        assert reports[0]["kind"] == "integrity_failure"
        assert_staging_clean(staging_path)

    @pytest.mark.asyncio
    async def test_unsupported_digest_algorithm(
        self, make_updater, publisher, signing_keys, new_release_db, db_manager
    ):
        raw = publisher.publish(new_release_db, signing_keys[0])
        manifest = json.loads(raw)
        manifest["hashfn"] = "sha3_256"
        publisher.publish_raw(json.dumps(manifest).encode("utf-8"), signing_keys[0])

        result = await make_updater().fetch_update()

        assert result.error_kind == "unsupported_digest_algorithm"
        assert result.stage == UpdateStage.RESOLVE_DIGEST
        assert publisher.requested(SOURCE_URL) == 0
        assert live_rows(db_manager) == OLD_ROWS

    @pytest.mark.asyncio
    async def test_weak_digest_refused_when_disallowed(
        self, make_updater, publisher, signing_keys, new_release_db
    ):
        publisher.publish(new_release_db, signing_keys[0], hashfn="md5")

        result = await make_updater(allow_weak_digests=False).fetch_update()

        assert result.error_kind == "unsupported_digest_algorithm"
        assert publisher.requested(SOURCE_URL) == 0

    @pytest.mark.asyncio
    async def test_http_source_rejected(self, make_updater, publisher, signing_keys, new_release_db):
        raw = publisher.publish(new_release_db, signing_keys[0])
        manifest = json.loads(raw)
        manifest["source"] = "http://rulesets.test/rulesets.sqlite"
        publisher.publish_raw(json.dumps(manifest).encode("utf-8"), signing_keys[0])

        result = await make_updater().fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "insecure_source_url"
        assert publisher.requested("http://rulesets.test/rulesets.sqlite") == 0

    @pytest.mark.asyncio
    async def test_swap_failure_keeps_old_contents(
        self, make_updater, publisher, signing_keys, tmp_path, db_manager
    ):
        broken = build_ruleset_db(
            tmp_path / "broken" / "rulesets.sqlite",
            {1: "<ruleset name='Only'/>"},
            [("dangling.example.com", 42)],
        )
        publisher.publish(broken, signing_keys[0])

        result = await make_updater().fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "swap_failure"
        assert live_rows(db_manager) == OLD_ROWS
        assert db_manager.get_state(RULESET_VERSION_KEY) is None


class TestNetwork:
    """Tests for network failures and failure reports."""

    @pytest.mark.asyncio
    async def test_manifest_unavailable(self, make_updater, publisher, db_manager, reports):
        publisher.serve(MANIFEST_URL, status=503)

        result = await make_updater(max_attempts=3).fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.error_kind == "transient_network_failure"
        assert result.stage == UpdateStage.FETCH_MANIFEST
        assert publisher.requested(MANIFEST_URL) == 3
        assert reports == []
        assert live_rows(db_manager) == OLD_ROWS

    @pytest.mark.asyncio
    async def test_malformed_manifest(self, make_updater, publisher):
        publisher.serve(MANIFEST_URL, b"<html>maintenance</html>")

        result = await make_updater().fetch_update()

        assert result.error_kind == "malformed_manifest"
        assert publisher.requested(SIGNATURE_URL) == 0

    @pytest.mark.asyncio
    async def test_empty_download_reported(
        self, make_updater, publisher, signing_keys, new_release_db, reports, staging_path
    ):
        publisher.publish(new_release_db, signing_keys[0])
        publisher.serve(SOURCE_URL, b"")

        result = await make_updater().fetch_update()

        assert result.error_kind == "empty_download"
        assert result.reported is True
        assert reports[0]["kind"] == "empty_download"
        assert_staging_clean(staging_path)

    @pytest.mark.asyncio
    async def test_unconfigured_reporter(self, make_updater, publisher, other_signing_keys, new_release_db):
        publisher.publish(new_release_db, other_signing_keys[0])
        updater = make_updater(report_url="")

        result = await updater.fetch_update()

        assert result.error_kind == "authenticity_failure"
        assert result.reported is False
        assert updater.reporter.unreported == 1
        assert publisher.requested(REPORT_URL) == 0

    @pytest.mark.asyncio
    async def test_report_endpoint_down(self, make_updater, publisher, other_signing_keys, new_release_db):
        publisher.publish(new_release_db, other_signing_keys[0])
        publisher.serve(REPORT_URL, status=500)
        updater = make_updater()

        result = await updater.fetch_update()

        assert result.outcome == UpdateOutcome.FAILED
        assert result.reported is False
        assert updater.get_status()["reports_unsent"] == 1
