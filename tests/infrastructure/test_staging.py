"""Tests for the staging directory."""

from catalog_api.infrastructure.staging import StagingArea


class TestStagingArea:
    """Tests for StagingArea."""

    def test_create_and_discard(self, tmp_path):
        staging = StagingArea(tmp_path / "nested" / "staging")

        path, handle = staging.create()
        with handle:
            handle.write(b"bytes")

        assert staging.exists(path)
        with staging.open(path) as f:
            assert f.read() == b"bytes"

        staging.discard(path)
        assert not staging.exists(path)

    def test_discard_is_best_effort(self, tmp_path):
        staging = StagingArea(tmp_path)

        staging.discard(tmp_path / "never-existed")
        staging.discard(None)
