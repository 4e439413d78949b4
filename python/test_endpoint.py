#!/usr/bin/env python3
"""エンドポイント解決のテスト"""
from urllib.parse import urlunsplit

import pytest

from s3_objstore.core.builder import ClientBuilder
from s3_objstore.core.endpoint import BaseURL, s3_quote
from s3_objstore.core.errors import ErrorKind, StorageError
from s3_objstore.utils.params import QueryParams


def build(base_url, *args, **kwargs) -> str:
    return urlunsplit(base_url.build(*args, **kwargs))


def test_plain_endpoint():
    base_url = BaseURL("play.min.io")
    assert base_url.scheme == "https"
    assert base_url.port is None
    assert base_url.host == "play.min.io"
    assert not base_url.is_aws_host
    assert not base_url.virtual_style_flag


def test_endpoint_with_scheme_and_port():
    base_url = BaseURL("http://localhost:9000")
    assert base_url.scheme == "http"
    assert base_url.port == 9000
    assert build(base_url, "GET", "us-east-1", "bucket", "a/b.txt") == \
        "http://localhost:9000/bucket/a/b.txt"


def test_default_port_is_omitted():
    base_url = BaseURL("https://example.com:443")
    assert build(base_url, "GET", "us-east-1", "bucket") == "https://example.com/bucket"


@pytest.mark.parametrize("endpoint", [
    "http://localhost:9000/path",
    "ftp://localhost",
    "localhost:99999",
    "bad_host!",
    "",
])
def test_invalid_endpoints(endpoint):
    with pytest.raises(StorageError) as exc:
        BaseURL(endpoint)
    assert exc.value.kind == ErrorKind.ARGUMENT


def test_aws_endpoint_flags():
    base_url = BaseURL("s3.us-west-2.amazonaws.com")
    assert base_url.is_aws_host
    assert not base_url.is_aws_china_host
    assert base_url.region == "us-west-2"
    assert base_url.host == "amazonaws.com"
    assert base_url.virtual_style_flag

    dualstack = BaseURL("s3.dualstack.ca-central-1.amazonaws.com")
    assert dualstack.dualstack_host_flag
    assert dualstack.region == "ca-central-1"

    accelerate = BaseURL("s3-accelerate.amazonaws.com")
    assert accelerate.accelerate_host_flag
    assert accelerate.region is None


def test_aliyun_endpoint_uses_virtual_style():
    base_url = BaseURL("oss-cn-hangzhou.aliyuncs.com")
    assert not base_url.is_aws_host
    assert base_url.virtual_style_flag
    assert build(base_url, "GET", "us-east-1", "bucket", "obj") == \
        "https://bucket.oss-cn-hangzhou.aliyuncs.com/obj"


def test_aws_virtual_style_url():
    base_url = BaseURL("s3.amazonaws.com")
    assert build(base_url, "GET", "us-west-2", "my-bucket", "a b/c.txt") == \
        "https://my-bucket.s3.us-west-2.amazonaws.com/a%20b/c.txt"


def test_dotted_bucket_over_https_is_path_style():
    base_url = BaseURL("s3.amazonaws.com")
    assert build(base_url, "GET", "us-east-1", "my.bucket", "a/b.txt") == \
        "https://s3.us-east-1.amazonaws.com/my.bucket/a/b.txt"


def test_dotted_bucket_over_http_keeps_virtual_style():
    base_url = BaseURL("s3.amazonaws.com", secure=False)
    assert build(base_url, "GET", "us-east-1", "my.bucket", "obj") == \
        "http://my.bucket.s3.us-east-1.amazonaws.com/obj"


def test_make_bucket_and_location_are_path_style():
    base_url = BaseURL("s3.amazonaws.com")
    assert build(base_url, "PUT", "eu-west-1", "bucket") == \
        "https://s3.eu-west-1.amazonaws.com/bucket"

    query = QueryParams({"location": ""})
    assert build(base_url, "GET", "us-east-1", "bucket", query_params=query) == \
        "https://s3.us-east-1.amazonaws.com/bucket?location="


def test_accelerate_and_dualstack_hosts():
    base_url = BaseURL("s3.amazonaws.com")
    base_url.accelerate_host_flag = True
    assert build(base_url, "GET", "us-east-1", "bucket", "obj") == \
        "https://bucket.s3-accelerate.amazonaws.com/obj"

    base_url.dualstack_host_flag = True
    assert build(base_url, "GET", "us-east-1", "bucket", "obj") == \
        "https://bucket.s3-accelerate.dualstack.amazonaws.com/obj"

    # パス形式が強制される場合は accelerate を使わない
    assert build(base_url, "PUT", "us-east-1", "bucket") == \
        "https://s3.dualstack.us-east-1.amazonaws.com/bucket"


def test_accelerate_rejects_dotted_bucket():
    base_url = BaseURL("s3-accelerate.amazonaws.com")
    with pytest.raises(StorageError) as exc:
        base_url.build("GET", "us-east-1", "my.bucket", "obj")
    assert exc.value.kind == ErrorKind.ARGUMENT


def test_bucketless_aws_request():
    base_url = BaseURL("s3.amazonaws.com")
    assert build(base_url, "GET", "ap-south-1") == "https://s3.ap-south-1.amazonaws.com/"


def test_object_without_bucket_is_rejected():
    with pytest.raises(StorageError) as exc:
        BaseURL("localhost:9000").build("GET", "us-east-1", None, "obj")
    assert exc.value.kind == ErrorKind.ARGUMENT


@pytest.mark.parametrize("object_name", ["..", "a/../b", "./a", "a/."])
def test_dot_segments_are_rejected(object_name):
    with pytest.raises(StorageError) as exc:
        BaseURL("localhost:9000").build("GET", "us-east-1", "bucket", object_name)
    assert exc.value.kind == ErrorKind.ARGUMENT


def test_query_parameters_keep_order_and_duplicates():
    query = QueryParams([("prefix", "a b"), ("x", "/"), ("x", "2")])
    url = BaseURL("localhost:9000").build("GET", "us-east-1", "bucket", query_params=query)
    assert url.query == "prefix=a%20b&x=%2F&x=2"


def test_build_is_idempotent():
    base_url = BaseURL("s3.amazonaws.com")
    query = QueryParams({"versionId": "v1"})
    first = build(base_url, "GET", "us-east-1", "bucket", "key+name", query)
    second = build(base_url, "GET", "us-east-1", "bucket", "key+name", query)
    assert first == second
    assert first == "https://bucket.s3.us-east-1.amazonaws.com/key%2Bname?versionId=v1"


def test_ipv6_endpoint():
    base_url = BaseURL("[::1]:9000", secure=False)
    assert build(base_url, "GET", "us-east-1", "bucket") == "http://[::1]:9000/bucket"


def test_s3_quote():
    assert s3_quote("a b&c") == "a%20b%26c"
    assert s3_quote("a/b c", safe="/") == "a/b%20c"
    assert s3_quote("-_.~") == "-_.~"


def test_china_endpoint_requires_region():
    with pytest.raises(StorageError) as exc:
        ClientBuilder().endpoint("s3.amazonaws.com.cn").build()
    assert exc.value.kind == ErrorKind.ARGUMENT

    client = ClientBuilder().endpoint("s3.cn-north-1.amazonaws.com.cn").build()
    assert client.executor.base_url.region == "cn-north-1"


def test_builder_requires_endpoint():
    with pytest.raises(StorageError) as exc:
        ClientBuilder().build()
    assert exc.value.kind == ErrorKind.ARGUMENT
