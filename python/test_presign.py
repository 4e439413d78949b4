#!/usr/bin/env python3
"""署名付きURLとPOSTポリシーのテスト"""
import base64
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from s3_objstore.core.errors import ErrorKind, StorageError
from s3_objstore.models.post_policy import PostPolicy


def query_of(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query, keep_blank_values=True).items()}


def make_policy(key_condition=True):
    policy = PostPolicy("bucket", datetime.now(timezone.utc) + timedelta(days=1))
    if key_condition:
        policy.add_starts_with_condition("key", "uploads/")
    policy.add_content_length_range_condition(1, 10 * 1024 * 1024)
    return policy


def test_presigned_get_object(client, http):
    url = client.presigned_get_object("bucket", "obj", expires=3600)

    parts = urlsplit(url)
    assert parts.scheme == "http"
    assert parts.netloc == "localhost:9000"
    assert parts.path == "/bucket/obj"
    query = query_of(url)
    assert query["X-Amz-Algorithm"] == "AWS4-HMAC-SHA256"
    assert query["X-Amz-Expires"] == "3600"
    assert query["X-Amz-Credential"].startswith("minio/")
    assert query["X-Amz-Credential"].endswith("/us-east-1/s3/aws4_request")
    assert "X-Amz-Signature" in query
    assert not http.requests


def test_presigned_url_with_response_headers(client, http):
    url = client.presigned_get_object(
        "bucket", "obj", response_headers={"response-content-type": "application/json"},
        version_id="v1",
    )

    query = query_of(url)
    assert query["response-content-type"] == "application/json"
    assert query["versionId"] == "v1"
    assert query["X-Amz-Expires"] == str(7 * 24 * 3600)


def test_presigned_put_object(client):
    url = client.presigned_put_object("bucket", "dir/obj.txt", expires=60)
    assert urlsplit(url).path == "/bucket/dir/obj.txt"
    assert query_of(url)["X-Amz-Expires"] == "60"


@pytest.mark.parametrize("expires", [0, 7 * 24 * 3600 + 1, -5])
def test_presign_invalid_expiry(client, http, expires):
    with pytest.raises(StorageError) as exc:
        client.presigned_get_object("bucket", "obj", expires=expires)
    assert exc.value.kind == ErrorKind.ARGUMENT
    assert not http.requests


def test_anonymous_presign_returns_plain_url(anonymous_client, http):
    url = anonymous_client.presigned_get_object("bucket", "obj")
    assert url == "http://localhost:9000/bucket/obj"
    assert not http.requests


def test_presigned_post_policy(client, http):
    form_data = client.presigned_post_policy(make_policy())

    assert {"policy", "x-amz-algorithm", "x-amz-credential", "x-amz-date", "x-amz-signature"} <= set(form_data)
    assert form_data["x-amz-algorithm"] == "AWS4-HMAC-SHA256"
    assert form_data["x-amz-credential"].endswith("/us-east-1/s3/aws4_request")

    document = json.loads(base64.b64decode(form_data["policy"]))
    conditions = document["conditions"]
    assert ["eq", "$bucket", "bucket"] in conditions
    assert ["starts-with", "$key", "uploads/"] in conditions
    assert ["content-length-range", 1, 10 * 1024 * 1024] in conditions
    assert document["expiration"].endswith("Z")
    assert not http.requests


def test_post_policy_requires_key_condition(client):
    with pytest.raises(StorageError) as exc:
        client.presigned_post_policy(make_policy(key_condition=False))
    assert exc.value.kind == ErrorKind.ARGUMENT


def test_post_policy_with_equals_key(client):
    policy = make_policy(key_condition=False)
    policy.add_equals_condition("$key", "uploads/file.txt")

    form_data = client.presigned_post_policy(policy)

    conditions = json.loads(base64.b64decode(form_data["policy"]))["conditions"]
    assert ["eq", "$key", "uploads/file.txt"] in conditions


def test_anonymous_post_policy_is_rejected(anonymous_client):
    with pytest.raises(StorageError) as exc:
        anonymous_client.presigned_post_policy(make_policy())
    assert exc.value.kind == ErrorKind.ARGUMENT


@pytest.mark.parametrize("element", ["success_action_redirect", "redirect", "content-length-range",
                                     "bucket", "x-amz-signature"])
def test_invalid_equals_conditions(element):
    policy = make_policy()
    with pytest.raises(StorageError):
        policy.add_equals_condition(element, "value")


@pytest.mark.parametrize("element", ["success_action_status", "x-amz-date", "policy"])
def test_invalid_starts_with_conditions(element):
    policy = make_policy()
    with pytest.raises(StorageError):
        policy.add_starts_with_condition(element, "value")


def test_starts_with_metadata_and_replacement():
    policy = make_policy()
    policy.add_starts_with_condition("x-amz-meta-owner", "")
    policy.add_starts_with_condition("key", "other/")

    conditions = policy.policy()["conditions"]
    assert ["starts-with", "$x-amz-meta-owner", ""] in conditions
    assert ["starts-with", "$key", "other/"] in conditions
    assert ["starts-with", "$key", "uploads/"] not in conditions


def test_content_length_range_validation():
    policy = make_policy()
    with pytest.raises(StorageError):
        policy.add_content_length_range_condition(10, 1)
    with pytest.raises(StorageError):
        policy.add_content_length_range_condition(-1, 1)

    policy.remove_content_length_range_condition()
    assert not any(c[0] == "content-length-range" for c in policy.policy()["conditions"])
