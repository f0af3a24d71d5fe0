"""
Unit tests for the storage clients.

The in-memory client is exercised directly. The boto3 client is driven
through botocore's Stubber, so no request ever leaves the process.
"""

import asyncio
import io
from datetime import datetime, timezone

import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from clist.core.files.models import StorageConfig
from clist.infrastructure.storage.client import (
    InvalidRangeError,
    MockStorageClient,
    ObjectNotFoundError,
    S3ClientConfig,
    S3StorageClient,
    StorageClientCache,
    StorageError,
    create_storage_client,
    parse_range,
)


def make_storage(**overrides) -> StorageConfig:
    values = {
        "id": 1,
        "name": "Media",
        "endpoint": "https://account.r2.cloudflarestorage.com",
        "access_key_id": "AKIA",
        "secret_access_key": "secret",
        "bucket": "media",
    }
    values.update(overrides)
    return StorageConfig(**values)


@pytest.fixture
def client():
    client = MockStorageClient()
    asyncio.run(client.put_object("docs/readme.md", b"# hi", "text/markdown"))
    asyncio.run(client.put_object("docs/img/cat.png", b"png", "image/png"))
    asyncio.run(client.put_object("top.txt", b"0123456789", "text/plain"))
    asyncio.run(client.create_folder("empty"))
    return client


# ---------------------------------------------------------------------------
# Range parsing
# ---------------------------------------------------------------------------

class TestParseRange:

    @pytest.mark.parametrize("header, expected", [
        ("bytes=0-4", (0, 4)),
        ("bytes=5-", (5, 9)),
        ("bytes=-3", (7, 9)),
        ("bytes=-50", (0, 9)),
        ("bytes=8-100", (8, 9)),
    ])
    def test_resolves_ranges(self, header, expected):
        assert parse_range(header, 10) == expected

    @pytest.mark.parametrize("header", [
        "bytes=10-",
        "bytes=5-2",
        "bytes=-0",
        "bytes=-",
        "bytes=0-1,4-5",
        "items=0-1",
    ])
    def test_rejects_unsatisfiable_or_unsupported(self, header):
        with pytest.raises(InvalidRangeError):
            parse_range(header, 10)


# ---------------------------------------------------------------------------
# Mock client
# ---------------------------------------------------------------------------

class TestMockStorageClient:

    def test_list_root(self, client):
        objects = asyncio.run(client.list_objects(""))
        assert [(o.name, o.is_directory) for o in objects] == [
            ("docs", True),
            ("empty", True),
            ("top.txt", False),
        ]

    def test_list_prefix_returns_full_keys(self, client):
        objects = asyncio.run(client.list_objects("docs"))
        assert [o.key for o in objects] == ["docs/img", "docs/readme.md"]
        assert objects[1].size == 4

    def test_empty_folder_lists_nothing(self, client):
        assert asyncio.run(client.list_objects("empty")) == []

    def test_head_missing_key(self, client):
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(client.head_object("nope.txt"))

    def test_get_full_object(self, client):
        content = asyncio.run(client.get_object("top.txt"))
        assert b"".join(content.body) == b"0123456789"
        assert content.content_length == 10
        assert not content.is_partial

    def test_get_range(self, client):
        content = asyncio.run(client.get_object("top.txt", "bytes=2-4"))
        assert b"".join(content.body) == b"234"
        assert content.content_range == "bytes 2-4/10"
        assert content.metadata.size == 10

    def test_put_accepts_file_objects(self, client):
        asyncio.run(client.put_object("f.bin", io.BytesIO(b"abc"), "application/octet-stream"))
        assert asyncio.run(client.head_object("f.bin")).size == 3

    def test_delete_prefix_removes_everything_below(self, client):
        count = asyncio.run(client.delete_prefix("docs"))
        assert count == 2
        assert client._keys() == ["empty/", "top.txt"]

    def test_delete_prefix_refuses_root(self, client):
        with pytest.raises(StorageError):
            asyncio.run(client.delete_prefix(""))


# ---------------------------------------------------------------------------
# S3 client configuration and behavior
# ---------------------------------------------------------------------------

class TestS3ClientConfig:

    def test_r2_uses_path_style_and_auto_region(self):
        config = S3ClientConfig.from_storage(make_storage())
        assert config.path_style is True
        assert config.region == "auto"

    @pytest.mark.parametrize("endpoint", [
        "https://oss-cn-hangzhou.aliyuncs.com",
        "https://cos.ap-guangzhou.myqcloud.com",
    ])
    def test_oss_and_cos_use_virtual_host_style(self, endpoint):
        config = S3ClientConfig.from_storage(make_storage(endpoint=endpoint))
        assert config.path_style is False

    def test_aws_replaces_auto_region(self):
        config = S3ClientConfig.from_storage(make_storage(endpoint="https://s3.amazonaws.com"))
        assert config.region == "us-east-1"


@pytest.fixture
def s3_client():
    client = S3StorageClient(S3ClientConfig.from_storage(make_storage()))
    with Stubber(client._s3_client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


class TestS3StorageClient:

    def test_list_objects_maps_prefixes_and_skips_markers(self, s3_client):
        client, stubber = s3_client
        modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
        stubber.add_response(
            "list_objects_v2",
            {
                "CommonPrefixes": [{"Prefix": "docs/img/"}],
                "Contents": [
                    {"Key": "docs/", "Size": 0, "LastModified": modified},
                    {"Key": "docs/b.txt", "Size": 3, "LastModified": modified},
                ],
                "IsTruncated": False,
            },
        )

        objects = asyncio.run(client.list_objects("docs"))

        assert [(o.key, o.name, o.is_directory) for o in objects] == [
            ("docs/img", "img", True),
            ("docs/b.txt", "b.txt", False),
        ]
        assert objects[1].last_modified == modified

    def test_missing_object_translates_to_not_found(self, s3_client):
        client, stubber = s3_client
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

        with pytest.raises(ObjectNotFoundError):
            asyncio.run(client.head_object("nope"))

    def test_other_errors_become_storage_error(self, s3_client):
        client, stubber = s3_client
        stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(StorageError, match="Delete failed"):
            asyncio.run(client.delete_object("a.txt"))

    def test_delete_prefix_reports_per_key_errors(self, s3_client):
        client, stubber = s3_client
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "old/a"}, {"Key": "old/b"}], "IsTruncated": False},
        )
        stubber.add_response(
            "delete_objects",
            {"Errors": [{"Key": "old/b", "Code": "AccessDenied", "Message": "no"}]},
        )

        with pytest.raises(StorageError, match="old/b"):
            asyncio.run(client.delete_prefix("old"))

    def test_create_folder_writes_marker(self, s3_client):
        client, stubber = s3_client
        stubber.add_response("put_object", {})
        asyncio.run(client.create_folder("new"))

    def test_list_objects_walks_every_page(self, s3_client):
        client, stubber = s3_client
        stubber.add_response(
            "list_objects_v2",
            {
                "Contents": [{"Key": "logs/a.txt", "Size": 1}],
                "IsTruncated": True,
                "NextContinuationToken": "page-2",
            },
        )
        stubber.add_response(
            "list_objects_v2",
            {
                "CommonPrefixes": [{"Prefix": "logs/old/"}],
                "Contents": [{"Key": "logs/b.txt", "Size": 2}],
                "IsTruncated": False,
            },
        )

        objects = asyncio.run(client.list_objects("logs"))

        assert sorted(o.key for o in objects) == ["logs/a.txt", "logs/b.txt", "logs/old"]

    def test_delete_prefix_batches_keys(self, s3_client, monkeypatch):
        client, stubber = s3_client
        keys = [f"big/{i:04d}" for i in range(1001)]
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": k} for k in keys], "IsTruncated": False},
        )
        stubber.add_response("delete_objects", {})
        stubber.add_response("delete_objects", {})

        batch_sizes = []
        delete_objects = client._s3_client.delete_objects

        def recording_delete_objects(**kwargs):
            batch_sizes.append(len(kwargs["Delete"]["Objects"]))
            return delete_objects(**kwargs)

        monkeypatch.setattr(client._s3_client, "delete_objects", recording_delete_objects)

        assert asyncio.run(client.delete_prefix("big")) == 1001
        assert batch_sizes == [1000, 1]

    def test_get_object_passes_range_and_reads_content_range(self, s3_client):
        client, stubber = s3_client
        stubber.add_response(
            "get_object",
            {
                "Body": StreamingBody(io.BytesIO(b"2345"), 4),
                "ContentLength": 4,
                "ContentRange": "bytes 2-5/10",
                "ContentType": "video/mp4",
            },
        )

        content = asyncio.run(client.get_object("clip.mp4", "bytes=2-5"))

        assert content.is_partial
        assert content.content_range == "bytes 2-5/10"
        assert content.content_length == 4
        assert content.metadata.size == 10
        assert b"".join(content.body) == b"2345"

    @pytest.mark.parametrize("header", ["bytes=0-1,4-5", "bytes=5-2", "items=0-1"])
    def test_unsupported_range_never_reaches_s3(self, s3_client, header):
        client, stubber = s3_client
        with pytest.raises(InvalidRangeError):
            asyncio.run(client.get_object("clip.mp4", header))


# ---------------------------------------------------------------------------
# Factory and cache
# ---------------------------------------------------------------------------

class TestStorageClientCache:

    def test_factory_mock_mode(self):
        assert isinstance(create_storage_client(make_storage(), mock_mode=True), MockStorageClient)

    def test_factory_requires_storage(self):
        with pytest.raises(ValueError):
            create_storage_client(None, mock_mode=False)

    def test_reuses_client_per_storage(self):
        cache = StorageClientCache(mock_mode=True)
        storage = make_storage()
        assert cache.get(storage) is cache.get(storage)
        assert cache.get(make_storage(id=2)) is not cache.get(storage)

    def test_mock_contents_survive_edits(self):
        cache = StorageClientCache(mock_mode=True)
        storage = make_storage()
        client = cache.get(storage)
        cache.invalidate(storage.id)
        assert cache.get(storage) is client

    def test_real_clients_rebuilt_after_edit(self):
        cache = StorageClientCache(mock_mode=False)
        storage = make_storage()
        client = cache.get(storage)
        cache.invalidate(storage.id)
        assert cache.get(storage) is not client

    def test_remove_drops_mock_client(self):
        cache = StorageClientCache(mock_mode=True)
        storage = make_storage()
        client = cache.get(storage)
        cache.remove(storage.id)
        assert cache.get(storage) is not client
