"""Unit tests for the command line interface."""

from __future__ import annotations

import asyncio
import json

import pytest
from click.testing import CliRunner

from feedcursor import __version__
from feedcursor.cli import feed as feed_cli
from feedcursor.cli.main import cli
from feedcursor.core.exceptions import PartitionReadFailedError
from feedcursor.core.runtime import FeedRuntime

from fakes import FlakyStore, insert_into


class TestCli:
    """Tests for CLI commands that need no MongoDB server."""

    def test_version(self):
        """Test the version option."""
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_info(self):
        """Test the info command."""
        result = CliRunner().invoke(cli, ["info"])
        assert result.exit_code == 0
        assert "feedcursor" in result.output
        assert "feeddb.readings" in result.output

    def test_config_json_redacts_uri(self):
        """Test configuration output hides the connection URI."""
        result = CliRunner().invoke(cli, ["config", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["mongodb"]["uri"] == "***"
        assert data["feed"]["partition_key_path"] == "/deviceId"

    def test_config_env(self):
        """Test configuration output as environment variables."""
        result = CliRunner().invoke(cli, ["config", "--format", "env"])
        assert result.exit_code == 0
        assert "FEEDCURSOR_FEED__MAX_CONCURRENCY=4" in result.output

    def test_demo_memory_backend(self):
        """Test the walkthrough against the in-memory store."""
        result = CliRunner().invoke(cli, ["demo", "--backend", "memory", "--quiet"])
        assert result.exit_code == 0, result.output
        assert "Initial read: 100 changes" in result.output
        assert "incremental read: 2 changes" in result.output

    def test_demo_progress_lines(self):
        """Test the walkthrough prints each document read."""
        result = CliRunner().invoke(cli, ["demo", "--count", "5"])
        assert result.exit_code == 0, result.output
        assert result.output.count("from the change feed.") == 7
        assert "incremental read: 2 changes" in result.output


def _seeded_store(counts: dict[int, int]) -> FlakyStore:
    """Build a store holding ``counts[i]`` readings in the i-th range."""
    store = FlakyStore(partition_count=2, range_page_size=10, batch_size=5)

    async def seed():
        collection = await store.ensure_collection("feeddb", "readings", "/deviceId")
        ranges = (await store.list_partition_ranges_page(collection)).ranges
        for index, count in counts.items():
            await insert_into(store, collection, ranges[index], count, prefix=f"p{index}")

    asyncio.run(seed())
    return store


class OneShotRuntime(FeedRuntime):
    """Runtime whose follow loop stops after the first read."""

    async def read_once(self, *args, **kwargs):
        result = await super().read_once(*args, **kwargs)
        self.shutdown_event.set()
        return result


@pytest.fixture
def use_store(monkeypatch):
    """Point the feed commands at a given store."""
    def install(store, runtime_class=FeedRuntime):
        monkeypatch.setattr(
            feed_cli,
            "_create_runtime",
            lambda settings: runtime_class(settings, store=store),
        )
        return store

    return install


class TestFeedCommands:
    """Tests for the feed commands against an in-memory store."""

    def test_ensure(self, use_store):
        """Test ensure reports the collection and its ranges."""
        use_store(_seeded_store({}))

        result = CliRunner().invoke(cli, ["ensure"])

        assert result.exit_code == 0, result.output
        assert "feeddb.readings is ready" in result.output
        assert "Partition ranges: 0, 1" in result.output

    def test_read_json_writes_checkpoint_file(self, use_store, tmp_path):
        """Test a read reports totals and stores the checkpoint file."""
        use_store(_seeded_store({1: 3}))
        checkpoint_file = tmp_path / "checkpoint.json"

        result = CliRunner().invoke(
            cli, ["read", "--checkpoint-file", str(checkpoint_file), "--format", "json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["change_count"] == 3
        assert data["checkpoint"] == {"0": "0", "1": "3"}
        assert json.loads(checkpoint_file.read_text()) == {"0": "0", "1": "3"}

    def test_read_resumes_from_checkpoint_file(self, use_store, tmp_path):
        """Test a read starts from the tokens in an existing file."""
        use_store(_seeded_store({0: 7}))
        checkpoint_file = tmp_path / "checkpoint.json"
        checkpoint_file.write_text(json.dumps({"0": "5"}))

        result = CliRunner().invoke(
            cli, ["read", "-f", str(checkpoint_file), "--show-records"]
        )

        assert result.exit_code == 0, result.output
        assert result.output.count("from partition 0") == 2
        assert json.loads(checkpoint_file.read_text())["0"] == "7"

    def test_failed_read_keeps_checkpoint_file_progress(
        self, use_store, tmp_path, test_settings
    ):
        """Test a failed read still writes the progress made before the failure."""
        test_settings.retry.max_attempts = 1
        store = use_store(_seeded_store({0: 10}))
        store.fail_reads = {"0": 2}
        checkpoint_file = tmp_path / "checkpoint.json"

        result = CliRunner().invoke(cli, ["read", "-f", str(checkpoint_file)])

        assert result.exit_code != 0
        assert isinstance(result.exception, PartitionReadFailedError)
        assert json.loads(checkpoint_file.read_text())["0"] == "5"

    def test_follow_prints_changes(self, use_store):
        """Test follow echoes every change as JSON until stopped."""
        use_store(_seeded_store({0: 2, 1: 1}), runtime_class=OneShotRuntime)

        result = CliRunner().invoke(cli, ["follow", "--interval", "0.01"])

        assert result.exit_code == 0, result.output
        assert "Stopped after 3 changes" in result.output
        lines = [line for line in result.stdout.splitlines() if line.startswith("{")]
        assert sorted(json.loads(line)["partition_id"] for line in lines) == ["0", "0", "1"]
