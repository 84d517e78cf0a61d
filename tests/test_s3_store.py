import base64
import hashlib
import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from conftest import write_file

from photoarchiver.errors import (
    BlobArchivedError,
    BlobNotFoundError,
    BlobRehydratingError,
    ContainerNotFoundError,
    StorageError,
)
from photoarchiver.services.files import UploadItem
from photoarchiver.services.reconcile import UploadReconciler
from photoarchiver.storage.base import AccessTier
from photoarchiver.storage.s3 import HASH_METADATA_KEY, S3BlobStore, hash_from_etag, hash_from_metadata


def client_error(code, op="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


@pytest.fixture
def client():
    c = MagicMock()
    c.meta.region_name = "eu-west-1"
    return c


@pytest.fixture
def s3(client):
    return S3BlobStore(client=client, rehydration_days=3)


def test_hash_from_etag():
    digest = hashlib.md5(b"x").digest()
    assert hash_from_etag(f'"{digest.hex()}"') == digest
    assert hash_from_etag('"0123456789abcdef0123456789abcdef-4"') is None
    assert hash_from_etag(None) is None


def test_hash_from_metadata():
    digest = hashlib.md5(b"x").digest()
    assert hash_from_metadata({HASH_METADATA_KEY: base64.b64encode(digest).decode()}) == digest
    assert hash_from_metadata({HASH_METADATA_KEY: "not base64!"}) is None
    assert hash_from_metadata({}) is None


def test_get_properties_maps_head(s3, client):
    digest = hashlib.md5(b"x").digest()
    metadata = {"createdat": "2019-05-25T00:00:00", HASH_METADATA_KEY: base64.b64encode(digest).decode()}
    client.head_object.return_value = {
        "ContentLength": 1,
        "ETag": f'"{digest.hex()}"',
        "StorageClass": "GLACIER",
        "Metadata": metadata,
        "Restore": 'ongoing-request="true"',
    }
    props = s3.get_properties("photos", "k")
    assert props.size == 1
    assert props.content_hash == digest
    assert props.tier is AccessTier.ARCHIVE
    assert props.rehydrating
    assert props.metadata == metadata


def test_metadata_hash_wins_over_encrypted_etag(s3, client):
    # SSE-KMS objects get a 32-hex ETag that is not the MD5 of the content
    digest = hashlib.md5(b"x").digest()
    client.head_object.return_value = {
        "ContentLength": 1,
        "ETag": '"' + "ab" * 16 + '"',
        "Metadata": {HASH_METADATA_KEY: base64.b64encode(digest).decode()},
    }
    assert s3.get_properties("photos", "k").content_hash == digest


def test_etag_is_the_fallback_hash(s3, client):
    digest = hashlib.md5(b"x").digest()
    client.head_object.return_value = {"ContentLength": 1, "ETag": f'"{digest.hex()}"'}
    assert s3.get_properties("photos", "k").content_hash == digest


def test_identical_content_is_recognized_on_encrypted_bucket(s3, client, tmp_path):
    data = b"same bytes"
    digest = hashlib.md5(data).digest()
    client.head_object.return_value = {
        "ContentLength": len(data),
        "ETag": '"' + "ab" * 16 + '"',
        "Metadata": {HASH_METADATA_KEY: base64.b64encode(digest).decode()},
    }
    f = write_file(tmp_path / "IMG_1.jpg", data)
    with UploadItem(f) as item:
        assert UploadReconciler(s3, "photos").exists_and_compare("2019/05/25/IMG_1.jpg", item) is True


def test_missing_storage_class_is_hot(s3, client):
    client.head_object.return_value = {"ContentLength": 0}
    assert s3.get_properties("photos", "k").tier is AccessTier.HOT


@pytest.mark.parametrize("code, exc", [
    ("404", BlobNotFoundError),
    ("NoSuchBucket", ContainerNotFoundError),
    ("AccessDenied", StorageError),
])
def test_head_errors_are_translated(s3, client, code, exc):
    client.head_object.side_effect = client_error(code)
    with pytest.raises(exc):
        s3.get_properties("photos", "k")


def test_exists(s3, client):
    client.head_object.return_value = {}
    assert s3.exists("photos", "k")
    client.head_object.side_effect = client_error("404")
    assert not s3.exists("photos", "k")


def test_upload_sets_class_type_and_hash(s3, client):
    s3.upload("photos", "k", b"data", metadata={"OriginalFileName": "a.jpg"},
              content_type="image/jpeg", tier=AccessTier.COOL)
    _, args, kwargs = client.upload_fileobj.mock_calls[0]
    assert args[1:] == ("photos", "k")
    extra = kwargs["ExtraArgs"]
    assert extra["StorageClass"] == "STANDARD_IA"
    assert extra["ContentType"] == "image/jpeg"
    assert extra["Metadata"]["OriginalFileName"] == "a.jpg"
    assert extra["Metadata"][HASH_METADATA_KEY] == base64.b64encode(hashlib.md5(b"data").digest()).decode()


def test_upload_to_missing_bucket(s3, client):
    client.upload_fileobj.side_effect = client_error("NoSuchBucket", "PutObject")
    with pytest.raises(ContainerNotFoundError):
        s3.upload("photos", "k", b"data", metadata={}, content_type="image/jpeg")


def test_set_access_tier_restores_archived(s3, client):
    client.head_object.return_value = {"StorageClass": "DEEP_ARCHIVE"}
    s3.set_access_tier("photos", "k", AccessTier.HOT)
    client.restore_object.assert_called_once()
    assert client.restore_object.call_args.kwargs["RestoreRequest"]["Days"] == 3
    client.copy_object.assert_not_called()


def test_set_access_tier_copies_with_storage_class(s3, client):
    client.head_object.return_value = {"StorageClass": "STANDARD"}
    s3.set_access_tier("photos", "k", AccessTier.ARCHIVE)
    assert client.copy_object.call_args.kwargs["StorageClass"] == "GLACIER"


def test_restore_in_progress_is_not_an_error(s3, client):
    client.head_object.return_value = {"StorageClass": "GLACIER"}
    client.restore_object.side_effect = client_error("RestoreAlreadyInProgress", "RestoreObject")
    s3.set_access_tier("photos", "k", AccessTier.HOT)


def test_download_counts_bytes(s3, client):
    def fake_download(bucket, key, fileobj, Callback=None, Config=None):
        fileobj.write(b"abc")
        Callback(2)
        Callback(1)

    client.download_fileobj.side_effect = fake_download
    buf = io.BytesIO()
    assert s3.download("photos", "k", buf) == 3
    assert buf.getvalue() == b"abc"


@pytest.mark.parametrize("restore, exc", [
    ("", BlobArchivedError),
    ('ongoing-request="true"', BlobRehydratingError),
])
def test_download_of_archived_object(s3, client, restore, exc):
    client.download_fileobj.side_effect = client_error("InvalidObjectState", "GetObject")
    client.head_object.return_value = {"StorageClass": "GLACIER", "Restore": restore}
    with pytest.raises(exc):
        s3.download("photos", "k", io.BytesIO())


def test_list_blobs_prefers_metadata_hash(s3, client):
    digest = hashlib.md5(b"a").digest()
    paginator = client.get_paginator.return_value
    paginator.paginate.return_value = [{"Contents": [
        {"Key": "2019/05/25/a.jpg", "Size": 1, "ETag": '"' + "ab" * 16 + '"'},
        {"Key": "2019/05/25/big.mov", "Size": 9, "ETag": '"abc-2"', "StorageClass": "GLACIER"},
    ]}]
    client.head_object.return_value = {"Metadata": {HASH_METADATA_KEY: base64.b64encode(digest).decode()}}

    items = list(s3.list_blobs("photos", "2019/05/25/"))
    assert [i.content_hash for i in items] == [digest, digest]
    assert items[1].tier is AccessTier.ARCHIVE
    assert items[0].metadata == {}
    assert client.head_object.call_count == 2


def test_list_blobs_falls_back_to_etag(s3, client):
    digest = hashlib.md5(b"a").digest()
    client.get_paginator.return_value.paginate.return_value = [{"Contents": [
        {"Key": "2019/05/25/a.jpg", "Size": 1, "ETag": f'"{digest.hex()}"'},
    ]}]
    client.head_object.return_value = {"Metadata": {"tags": "beach"}}
    (item,) = s3.list_blobs("photos", "2019/05/25/", include_metadata=True)
    assert item.content_hash == digest
    assert item.metadata == {"tags": "beach"}


def test_create_container_uses_region(s3, client):
    client.head_bucket.side_effect = client_error("404", "HeadBucket")
    assert s3.create_container_if_not_exists("photos")
    assert client.create_bucket.call_args.kwargs == {
        "Bucket": "photos", "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"}}


def test_create_container_existing(s3, client):
    client.head_bucket.return_value = {}
    assert not s3.create_container_if_not_exists("photos")
    client.create_bucket.assert_not_called()
