"""Tests for the registry filesystem storage."""

import pytest

from imageset_mirror.registry.storage import (
    DOCKER_MANIFEST_V2,
    OCI_INDEX,
    BlobUnknownError,
    DigestInvalidError,
    ManifestUnknownError,
    NameInvalidError,
    UploadUnknownError,
    compute_digest,
    manifest_media_type,
)


class TestLayout:
    """Test the on-disk layout matches distribution's filesystem driver."""

    def test_blob_path(self, cache_storage):
        digest = compute_digest(b"data")
        hex_digest = digest.split(":", 1)[1]

        path = cache_storage.blob_path(digest)

        assert path == (
            cache_storage.root_directory
            / "docker/registry/v2/blobs/sha256"
            / hex_digest[:2]
            / hex_digest
            / "data"
        )

    def test_tag_and_revision_links(self, cache_storage, store_image):
        digests = store_image(cache_storage, "ns/img", "v1")
        repo = cache_storage.repository_path("ns/img")
        hex_digest = digests["manifest"].split(":", 1)[1]

        assert (repo / "_manifests/tags/v1/current/link").read_text() == digests["manifest"]
        assert (repo / f"_manifests/tags/v1/index/sha256/{hex_digest}/link").is_file()
        assert (repo / f"_manifests/revisions/sha256/{hex_digest}/link").is_file()

    @pytest.mark.parametrize("name", ["../escape", "UPPER/case", "", "ns//img"])
    def test_invalid_names(self, cache_storage, name):
        """Test names that are invalid or escape the root are rejected."""
        with pytest.raises(NameInvalidError):
            cache_storage.repository_path(name)


class TestBlobs:
    """Test blob storage."""

    def test_put_blob_verifies_digest(self, cache_storage):
        with pytest.raises(DigestInvalidError):
            cache_storage.put_blob("ns/img", b"data", compute_digest(b"other"))

    def test_blob_is_scoped_to_repository(self, cache_storage):
        """Test a blob is only served from repositories that link it."""
        digest = cache_storage.put_blob("ns/a", b"data")

        assert cache_storage.repository_has_blob("ns/a", digest)
        assert not cache_storage.repository_has_blob("ns/b", digest)
        with pytest.raises(BlobUnknownError):
            cache_storage.open_blob("ns/b", digest)

    def test_mount_blob(self, cache_storage):
        digest = cache_storage.put_blob("ns/a", b"data")

        assert cache_storage.mount_blob("ns/b", digest, "ns/a")
        assert cache_storage.stat_blob("ns/b", digest) == 4

    def test_mount_unknown_blob(self, cache_storage):
        assert not cache_storage.mount_blob("ns/b", compute_digest(b"x"), "ns/a")


class TestUploads:
    """Test chunked uploads."""

    def test_chunked_upload(self, cache_storage):
        upload_id = cache_storage.start_upload("ns/img")
        cache_storage.append_upload("ns/img", upload_id, b"hello ")
        size = cache_storage.append_upload("ns/img", upload_id, b"world")

        digest = cache_storage.finish_upload("ns/img", upload_id, compute_digest(b"hello world"))

        assert size == 11
        assert cache_storage.open_blob("ns/img", digest).read_bytes() == b"hello world"

    def test_digest_mismatch_discards_upload(self, cache_storage):
        upload_id = cache_storage.start_upload("ns/img")
        cache_storage.append_upload("ns/img", upload_id, b"hello")

        with pytest.raises(DigestInvalidError):
            cache_storage.finish_upload("ns/img", upload_id, compute_digest(b"other"))
        with pytest.raises(UploadUnknownError):
            cache_storage.upload_size("ns/img", upload_id)

    def test_unknown_upload_id(self, cache_storage):
        with pytest.raises(UploadUnknownError):
            cache_storage.upload_size("ns/img", "not-a-uuid")

    def test_cancel_upload(self, cache_storage):
        upload_id = cache_storage.start_upload("ns/img")

        cache_storage.cancel_upload("ns/img", upload_id)

        with pytest.raises(UploadUnknownError):
            cache_storage.cancel_upload("ns/img", upload_id)


class TestManifests:
    """Test manifest storage and listing."""

    def test_get_by_tag_and_digest(self, cache_storage, store_image):
        digests = store_image(cache_storage, "ns/img", "v1")

        by_tag = cache_storage.get_manifest("ns/img", "v1")
        by_digest = cache_storage.get_manifest("ns/img", digests["manifest"])

        assert by_tag == by_digest
        assert by_tag[1] == digests["manifest"]
        assert by_tag[2] == DOCKER_MANIFEST_V2

    def test_unknown_manifest(self, cache_storage):
        with pytest.raises(ManifestUnknownError):
            cache_storage.get_manifest("ns/img", "v1")

    def test_put_by_wrong_digest(self, cache_storage):
        with pytest.raises(DigestInvalidError):
            cache_storage.put_manifest("ns/img", compute_digest(b"x"), b"{}")

    def test_list_tags_and_repositories(self, cache_storage, store_image):
        store_image(cache_storage, "ns/img", "v1")
        store_image(cache_storage, "ns/img", "v2")
        store_image(cache_storage, "other", "latest")

        assert cache_storage.list_tags("ns/img") == ["v1", "v2"]
        assert cache_storage.list_repositories() == ["ns/img", "other"]

    def test_list_tags_unknown_repository(self, cache_storage):
        with pytest.raises(ManifestUnknownError):
            cache_storage.list_tags("missing")

    def test_linked_digests(self, cache_storage, store_image):
        digests = store_image(cache_storage, "ns/img", "v1")

        assert set(cache_storage.linked_digests("ns/img")) == set(digests.values())


class TestMediaType:
    """Test manifest media type detection."""

    def test_declared_media_type(self):
        assert manifest_media_type(b'{"mediaType": "x/y"}') == "x/y"

    def test_index_without_media_type(self):
        assert manifest_media_type(b'{"manifests": []}') == OCI_INDEX

    def test_invalid_json_uses_fallback(self):
        assert manifest_media_type(b"not json", "a/b") == "a/b"
