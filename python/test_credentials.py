#!/usr/bin/env python3
"""認証情報プロバイダーのテスト"""
import threading
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError

from s3_objstore.core.credentials import (
    AssumeRoleProvider,
    CachingProvider,
    Credentials,
    SessionProvider,
    StaticProvider,
    provider_from_config,
)
from s3_objstore.core.errors import ErrorKind, StorageError
from s3_objstore.models.config import AssumeRoleConfig, CredentialsConfig

ROLE_ARN = "arn:aws:iam::123456789012:role/uploader"


class FakeSts:
    """assume_role の呼び出しを記録するSTSクライアント"""

    def __init__(self, expiration=None, error=None):
        self.calls = []
        self.expiration = expiration
        self.error = error

    def assume_role(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return {
            "Credentials": {
                "AccessKeyId": f"ASIA{len(self.calls)}",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
                "Expiration": self.expiration or datetime.now(timezone.utc) + timedelta(hours=1),
            }
        }


def test_static_provider():
    credentials = StaticProvider("minio", "minio123", "token").retrieve()
    assert credentials.access_key == "minio"
    assert credentials.secret_key == "minio123"
    assert credentials.session_token == "token"
    assert not credentials.is_expired()


def test_credentials_require_keys():
    with pytest.raises(ValueError):
        Credentials("", "secret")
    with pytest.raises(ValueError):
        Credentials("access", "")


def test_credentials_expiry():
    now = datetime.now(timezone.utc)
    assert Credentials("a", "b", expiration=now - timedelta(seconds=1)).is_expired()
    # 猶予時間内は期限切れとみなす
    assert Credentials("a", "b", expiration=now + timedelta(seconds=5)).is_expired()
    assert not Credentials("a", "b", expiration=now + timedelta(minutes=5)).is_expired()


def test_caching_provider_fetches_once_under_concurrency():
    calls = []

    class CountingProvider(CachingProvider):
        def _fetch(self):
            calls.append(1)
            return Credentials("a", "b", expiration=datetime.now(timezone.utc) + timedelta(hours=1))

    provider = CountingProvider()
    threads = [threading.Thread(target=provider.retrieve) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1


def test_assume_role_provider():
    sts = FakeSts()
    config = AssumeRoleConfig(ROLE_ARN, "session-1", external_id="ext", duration_seconds=900)
    provider = AssumeRoleProvider(config, "us-east-1", sts_client=sts)

    first = provider.retrieve()
    second = provider.retrieve()

    assert first is second
    assert first.access_key == "ASIA1"
    assert first.session_token == "token"
    assert sts.calls == [{
        "RoleArn": ROLE_ARN,
        "RoleSessionName": "session-1",
        "DurationSeconds": 900,
        "ExternalId": "ext",
    }]


def test_assume_role_refreshes_expired_credentials():
    sts = FakeSts(expiration=datetime.now(timezone.utc) - timedelta(minutes=1))
    provider = AssumeRoleProvider(AssumeRoleConfig(ROLE_ARN, "session-1"), "us-east-1", sts_client=sts)

    assert provider.retrieve().access_key == "ASIA1"
    assert provider.retrieve().access_key == "ASIA2"


def test_assume_role_error():
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "AssumeRole")
    provider = AssumeRoleProvider(
        AssumeRoleConfig(ROLE_ARN, "session-1"), "us-east-1", sts_client=FakeSts(error=error),
    )

    with pytest.raises(StorageError) as exc:
        provider.retrieve()
    assert exc.value.kind == ErrorKind.SERVICE
    assert exc.value.code == "CredentialsError"
    assert exc.value.__cause__ is error


def test_session_provider_without_credentials():
    class EmptySession:
        def get_credentials(self):
            return None

    with pytest.raises(StorageError) as exc:
        SessionProvider(session=EmptySession()).retrieve()
    assert exc.value.code == "CredentialsError"


def test_provider_from_config():
    assert provider_from_config(CredentialsConfig(), None) is None

    static = provider_from_config(CredentialsConfig(access_key="a", secret_key="b"), None)
    assert isinstance(static, StaticProvider)

    assume = provider_from_config(
        CredentialsConfig(assume_role={"role_arn": ROLE_ARN, "session_name": "s1"}), "eu-west-1",
    )
    assert isinstance(assume, AssumeRoleProvider)
    assert assume.region == "eu-west-1"


def test_builder_uses_provider(http):
    from s3_objstore.core.builder import ClientBuilder

    sts = FakeSts()
    provider = AssumeRoleProvider(AssumeRoleConfig(ROLE_ARN, "session-1"), "us-east-1", sts_client=sts)
    client = (
        ClientBuilder()
        .endpoint("localhost:9000", secure=False)
        .region("us-east-1")
        .credentials_provider(provider)
        .http_client(http)
        .build()
    )
    http.add(200)

    client.remove_object("bucket", "obj")

    request = http.requests[0]
    assert "Credential=ASIA1/" in request.header("Authorization")
    assert request.header("X-Amz-Security-Token") == "token"
