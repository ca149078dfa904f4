"""
Hasher Tests - Verify fingerprinting used for change detection.

Tests:
- xxHash fingerprints of file bytes
- URL items fingerprinted by their identity string
- Vanished files dropped without raising
"""

import pytest

from docbatch.hasher import (
    FINGERPRINT_LENGTH, Hasher, fingerprint_file, fingerprint_text,
)
from docbatch.models import WorkItem


class TestFingerprints:
    """Tests for the fingerprint functions."""

    def test_fixed_length(self, sample_files):
        """Fingerprints are fixed-length hex digests."""
        digest = fingerprint_file(sample_files["pdf"])
        assert len(digest) == FINGERPRINT_LENGTH
        int(digest, 16)

    def test_identical_content_same_fingerprint(self, temp_dir):
        """Files with identical bytes share a fingerprint."""
        a = temp_dir / "a.txt"
        b = temp_dir / "b.txt"
        a.write_text("same content")
        b.write_text("same content")
        assert fingerprint_file(a) == fingerprint_file(b)

    def test_changed_content_changes_fingerprint(self, temp_dir):
        """Editing a file changes its fingerprint."""
        path = temp_dir / "doc.md"
        path.write_text("version one")
        before = fingerprint_file(path)
        path.write_text("version two")
        assert fingerprint_file(path) != before

    def test_text_fingerprint_stable(self):
        """The same URL always fingerprints the same way."""
        assert fingerprint_text("https://a.example") == fingerprint_text("https://a.example")
        assert fingerprint_text("https://a.example") != fingerprint_text("https://b.example")


class TestHasher:
    """Tests for the Hasher class."""

    @pytest.mark.asyncio
    async def test_fingerprints_file_items(self, sample_files, test_config):
        """File items get the fingerprint of their bytes."""
        item = WorkItem.for_file(sample_files["pdf"], test_config.input_dir)

        hasher = Hasher(test_config)
        results = await hasher.fingerprint_items([item])
        hasher.close()

        assert results == [item]
        assert item.fingerprint == fingerprint_file(sample_files["pdf"])

    @pytest.mark.asyncio
    async def test_url_items_fingerprint_the_url(self, test_config):
        """URL items are fingerprinted by URL, not by fetched content."""
        item = WorkItem.for_url("https://a.example/page")

        hasher = Hasher(test_config)
        await hasher.fingerprint_items([item])
        hasher.close()

        assert item.fingerprint == fingerprint_text("https://a.example/page")

    @pytest.mark.asyncio
    async def test_drops_deleted_file(self, temp_dir, test_config):
        """A file deleted between scan and fingerprint is dropped, not raised."""
        path = test_config.input_dir / "temporary.pdf"
        path.write_bytes(b"gone soon")
        item = WorkItem.for_file(path, test_config.input_dir)
        path.unlink()

        hasher = Hasher(test_config)
        results = await hasher.fingerprint_items([item])
        hasher.close()

        assert results == []
        assert item.fingerprint is None

    @pytest.mark.asyncio
    async def test_parallel_fingerprinting(self, test_config):
        """Many items are fingerprinted in one call, keeping order."""
        items = []
        for i in range(20):
            path = test_config.input_dir / f"doc_{i}.md"
            path.write_text(f"Content for file {i}")
            items.append(WorkItem.for_file(path, test_config.input_dir))

        hasher = Hasher(test_config)
        results = await hasher.fingerprint_items(items)
        hasher.close()

        assert [r.key for r in results] == [i.key for i in items]
        assert len({r.fingerprint for r in results}) == 20

    @pytest.mark.asyncio
    async def test_fingerprint_path_missing_returns_none(self, temp_dir, test_config):
        """fingerprint_path returns None for unreadable files."""
        hasher = Hasher(test_config)
        assert await hasher.fingerprint_path(temp_dir / "nope.txt") is None
        hasher.close()
