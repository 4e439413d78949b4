#!/usr/bin/env python3
"""バケット・オブジェクト操作のテスト"""
import os
from datetime import datetime, timezone

import pytest

from conftest import error_xml
from s3_objstore.core.constants import MAX_BUCKET_POLICY_SIZE
from s3_objstore.core.errors import ErrorKind, StorageError
from s3_objstore.models.commonconfig import (
    GOVERNANCE,
    ObjectLockConfig,
    Retention,
    SseConfig,
    Tags,
    VersioningConfig,
)


@pytest.mark.parametrize("bucket_name", ["ab", "Bucket", "192.168.1.1", "a..b", "bucket-", "a.-b"])
def test_invalid_bucket_names(client, http, bucket_name):
    with pytest.raises(StorageError) as exc:
        client.bucket_exists(bucket_name)
    assert exc.value.kind == ErrorKind.ARGUMENT
    assert not http.requests


def test_make_bucket_default_region(client, http):
    http.add(200)

    client.make_bucket("bucket")

    request = http.requests[0]
    assert request.method == "PUT"
    assert request.path == "/bucket"
    assert request.body == b""
    assert client.region_cache.get("bucket") == "us-east-1"


def test_make_bucket_rejects_other_region_on_pinned_client(client, http):
    with pytest.raises(StorageError) as exc:
        client.make_bucket("bucket", "eu-west-1")
    assert exc.value.kind == ErrorKind.ARGUMENT
    assert not http.requests


def test_make_bucket_with_location_and_object_lock(http):
    from s3_objstore.core.builder import ClientBuilder

    client = (
        ClientBuilder()
        .endpoint("localhost:9000", secure=False)
        .credentials("minio", "minio123")
        .http_client(http)
        .build()
    )
    http.add(200)

    client.make_bucket("bucket", "eu-west-1", object_lock=True)

    request = http.requests[0]
    assert "<LocationConstraint>eu-west-1</LocationConstraint>" in request.body.decode()
    assert request.header("x-amz-bucket-object-lock-enabled") == "true"
    assert "eu-west-1/s3/aws4_request" in request.header("Authorization")
    assert client.region_cache.get("bucket") == "eu-west-1"


def test_bucket_exists(client, http):
    http.add(200)
    http.add(404)

    assert client.bucket_exists("bucket")
    assert not client.bucket_exists("missing")
    assert [r.method for r in http.requests] == ["HEAD", "HEAD"]


def test_bucket_exists_propagates_other_errors(client, http):
    http.add(403)
    with pytest.raises(StorageError) as exc:
        client.bucket_exists("bucket")
    assert exc.value.code == "AccessDenied"


def test_remove_bucket_evicts_region(client, http):
    client.region_cache.set("bucket", "us-east-1")
    http.add(204)

    client.remove_bucket("bucket")

    assert http.requests[0].method == "DELETE"
    assert "bucket" not in client.region_cache


def test_list_buckets(client, http):
    http.add_xml(
        "<ListAllMyBucketsResult><Buckets>"
        "<Bucket><Name>one</Name><CreationDate>2023-05-06T07:08:09.000Z</CreationDate></Bucket>"
        "<Bucket><Name>two</Name><CreationDate>2023-05-07T07:08:09.000Z</CreationDate></Bucket>"
        "</Buckets></ListAllMyBucketsResult>"
    )

    buckets = client.list_buckets()

    assert [b.name for b in buckets] == ["one", "two"]
    assert buckets[0].creation_date == datetime(2023, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    assert http.requests[0].path == "/"


def test_bucket_policy(client, http):
    policy = '{"Version":"2012-10-17","Statement":[]}'
    http.add(200, policy.encode(), {"Content-Type": "application/json"})
    http.add_xml(error_xml("NoSuchBucketPolicy", "The bucket policy does not exist"), status=404)

    assert client.get_bucket_policy("bucket") == policy
    assert client.get_bucket_policy("bucket") == ""


def test_bucket_policy_too_large(client, http):
    http.add(200, b"x" * (MAX_BUCKET_POLICY_SIZE + 1), {"Content-Type": "application/json"})

    with pytest.raises(StorageError) as exc:
        client.get_bucket_policy("bucket")
    assert exc.value.kind == ErrorKind.INVALID_RESPONSE


def test_set_bucket_policy_from_dict(client, http):
    http.add(204)
    client.set_bucket_policy("bucket", {"Version": "2012-10-17"})

    request = http.requests[0]
    assert request.query == {"policy": ""}
    assert request.header("Content-Type") == "application/json"
    assert request.body == b'{"Version": "2012-10-17"}'


def test_bucket_tags(client, http):
    http.add_xml(
        "<Tagging><TagSet>"
        "<Tag><Key>project</Key><Value>alpha</Value></Tag>"
        "</TagSet></Tagging>"
    )
    http.add_xml(error_xml("NoSuchTagSet", "The TagSet does not exist"), status=404)

    assert client.get_bucket_tags("bucket") == {"project": "alpha"}
    assert client.get_bucket_tags("bucket") == {}


def test_set_bucket_tags(client, http):
    http.add(204)
    tags = Tags.new_bucket_tags()
    tags["project"] = "alpha"

    client.set_bucket_tags("bucket", tags)

    body = http.requests[0].body.decode()
    assert "<Key>project</Key><Value>alpha</Value>" in body
    assert http.requests[0].query == {"tagging": ""}


def test_bucket_encryption(client, http):
    http.add_xml(
        "<ServerSideEncryptionConfiguration><Rule><ApplyServerSideEncryptionByDefault>"
        "<SSEAlgorithm>aws:kms</SSEAlgorithm><KMSMasterKeyID>key-1</KMSMasterKeyID>"
        "</ApplyServerSideEncryptionByDefault></Rule></ServerSideEncryptionConfiguration>"
    )
    http.add_xml(
        error_xml("ServerSideEncryptionConfigurationNotFoundError", "not found"), status=404,
    )

    assert client.get_bucket_encryption("bucket") == SseConfig("aws:kms", "key-1")
    assert client.get_bucket_encryption("bucket") is None


def test_bucket_versioning(client, http):
    http.add_xml("<VersioningConfiguration><Status>Enabled</Status></VersioningConfiguration>")
    http.add_xml("<VersioningConfiguration/>")

    assert client.get_bucket_versioning("bucket").status == "Enabled"
    assert client.get_bucket_versioning("bucket").status == "Off"

    with pytest.raises(StorageError) as exc:
        client.set_bucket_versioning("bucket", VersioningConfig("Off"))
    assert exc.value.kind == ErrorKind.ARGUMENT


def test_object_lock_config(client, http):
    http.add_xml(
        "<ObjectLockConfiguration><ObjectLockEnabled>Enabled</ObjectLockEnabled>"
        "<Rule><DefaultRetention><Mode>GOVERNANCE</Mode><Days>30</Days></DefaultRetention></Rule>"
        "</ObjectLockConfiguration>"
    )
    http.add_xml(error_xml("ObjectLockConfigurationNotFoundError", "not found"), status=404)
    http.add(200)

    assert client.get_object_lock_config("bucket") == ObjectLockConfig(GOVERNANCE, 30, "Days")
    assert client.get_object_lock_config("bucket") is None

    client.delete_object_lock_config("bucket")
    body = http.requests[2].body.decode()
    assert "<ObjectLockEnabled>Enabled</ObjectLockEnabled>" in body
    assert "<Rule>" not in body


def test_stat_object(client, http):
    http.add(200, headers={
        "Content-Length": "1234",
        "ETag": '"abc"',
        "Content-Type": "text/plain",
        "Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT",
        "x-amz-meta-Owner": "alice",
        "x-amz-version-id": "v1",
    })

    stat = client.stat_object("bucket", "obj", version_id="v1")

    assert stat.size == 1234
    assert stat.etag == "abc"
    assert stat.content_type == "text/plain"
    assert stat.metadata == {"owner": "alice"}
    assert stat.last_modified.year == 2015
    assert http.requests[0].query == {"versionId": "v1"}


def test_get_object_range(client, http):
    http.add(206, b"bcd")

    response = client.get_object("bucket", "obj", offset=1, length=3)
    try:
        assert response.read() == b"bcd"
    finally:
        response.close()
        response.release_conn()

    assert http.requests[0].header("Range") == "bytes=1-3"
    assert http.requests[0].kwargs["preload_content"] is False


def test_get_object_invalid_range(client, http):
    with pytest.raises(StorageError):
        client.get_object("bucket", "obj", offset=-1)
    with pytest.raises(StorageError):
        client.get_object("bucket", "obj", length=0)
    assert not http.requests


def test_download_object(client, http, tmp_path):
    destination = str(tmp_path / "out" / "file.bin")
    http.add(200, headers={"Content-Length": "11", "ETag": '"abc"'})
    http.add(200, b"hello world")

    stat = client.download_object("bucket", "obj", destination)

    with open(destination, "rb") as file:
        assert file.read() == b"hello world"
    assert stat.size == 11
    assert not os.path.exists(destination + ".abc.part")
    assert http.requests[1].header("Range") is None
    assert http.requests[1].header("If-Match") == '"abc"'


def test_download_object_resumes_part_file(client, http, tmp_path):
    destination = str(tmp_path / "file.bin")
    with open(destination + ".abc.part", "wb") as file:
        file.write(b"hello")
    http.add(200, headers={"Content-Length": "11", "ETag": '"abc"'})
    http.add(206, b" world")

    client.download_object("bucket", "obj", destination)

    with open(destination, "rb") as file:
        assert file.read() == b"hello world"
    assert http.requests[1].header("Range") == "bytes=5-"


def test_download_object_size_mismatch(client, http, tmp_path):
    destination = str(tmp_path / "file.bin")
    http.add(200, headers={"Content-Length": "11", "ETag": '"abc"'})
    http.add(200, b"short")

    with pytest.raises(StorageError) as exc:
        client.download_object("bucket", "obj", destination)
    assert exc.value.kind == ErrorKind.INVALID_RESPONSE
    assert not os.path.exists(destination)


def test_download_object_refuses_existing_file(client, http, tmp_path):
    destination = tmp_path / "file.bin"
    destination.write_bytes(b"old")

    with pytest.raises(ValueError):
        client.download_object("bucket", "obj", str(destination))
    assert not http.requests


def test_upload_file(client, http, tmp_path):
    source = tmp_path / "data.txt"
    source.write_bytes(b"file contents")
    http.add(200, headers={"ETag": '"f1"'})

    result = client.upload_file("bucket", "data.txt", str(source), show_progress=True)

    assert http.requests[0].body == b"file contents"
    assert http.requests[0].header("Content-Type") == "application/octet-stream"
    assert result.etag == "f1"


def test_put_object_headers(client, http):
    http.add(200, headers={"ETag": '"abc"'})
    tags = Tags.new_object_tags()
    tags["a b"] = "c"
    retain_until = datetime(2030, 1, 1, tzinfo=timezone.utc)

    client.put_object("bucket", "obj", b"x", tags=tags,
                      retention=Retention(GOVERNANCE, retain_until), legal_hold=True)

    request = http.requests[0]
    assert request.header("x-amz-tagging") == "a%20b=c"
    assert request.header("x-amz-object-lock-mode") == "GOVERNANCE"
    assert request.header("x-amz-object-lock-retain-until-date") == "2030-01-01T00:00:00.000Z"
    assert request.header("x-amz-object-lock-legal-hold") == "ON"


def test_remove_object(client, http):
    http.add(204)
    client.remove_object("bucket", "obj", version_id="v1", bypass_governance_mode=True)

    request = http.requests[0]
    assert request.method == "DELETE"
    assert request.query == {"versionId": "v1"}
    assert request.header("x-amz-bypass-governance-retention") == "true"


def test_object_tags(client, http):
    http.add_xml("<Tagging><TagSet><Tag><Key>k</Key><Value>v</Value></Tag></TagSet></Tagging>")
    http.add(204)

    tags = client.get_object_tags("bucket", "obj")
    assert tags == {"k": "v"}
    assert tags.max_tags == 10

    client.delete_object_tags("bucket", "obj", version_id="v1")
    assert http.requests[1].query == {"tagging": "", "versionId": "v1"}


def test_object_retention(client, http):
    http.add_xml(
        "<Retention><Mode>COMPLIANCE</Mode>"
        "<RetainUntilDate>2030-01-01T00:00:00.000Z</RetainUntilDate></Retention>"
    )
    http.add_xml(error_xml("NoSuchObjectLockConfiguration", "not configured"), status=404)

    retention = client.get_object_retention("bucket", "obj")
    assert retention.mode == "COMPLIANCE"
    assert retention.retain_until_date == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert client.get_object_retention("bucket", "obj") is None


def test_legal_hold(client, http):
    http.add(200)
    http.add_xml("<LegalHold><Status>ON</Status></LegalHold>")
    http.add_xml(error_xml("NoSuchObjectLockConfiguration", "not configured"), status=404)

    client.enable_object_legal_hold("bucket", "obj")
    assert client.is_object_legal_hold_enabled("bucket", "obj")
    assert not client.is_object_legal_hold_enabled("bucket", "obj")

    assert "<Status>ON</Status>" in http.requests[0].body.decode()
    assert http.requests[0].query == {"legal-hold": ""}


def test_endpoint_toggles(client, http):
    client.enable_virtual_style_endpoint()
    http.add(200)
    client.stat_object("bucket", "obj")
    assert http.requests[0].netloc == "bucket.localhost:9000"

    client.disable_virtual_style_endpoint()
    http.add(200)
    client.stat_object("bucket", "obj")
    assert http.requests[1].netloc == "localhost:9000"
