from unittest.mock import MagicMock

from botocore.exceptions import ClientError, EndpointConnectionError

from storage.s3_provider import S3CompatibleProvider


def _provider(public_base_url=None):
    provider = S3CompatibleProvider()
    provider.s3_client = MagicMock()
    provider.bucket_name = "audio-bucket"
    provider.public_base_url = public_base_url
    return provider


def test_file_exists_handles_missing_object():
    provider = _provider()
    provider.s3_client.head_object.side_effect = ClientError(
        {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject"
    )
    assert provider.file_exists("audio/x.mp3") is False


def test_connection_errors_do_not_escape():
    provider = _provider()
    unreachable = EndpointConnectionError(endpoint_url="https://s3.example")
    provider.s3_client.head_object.side_effect = unreachable
    provider.s3_client.get_object.side_effect = unreachable
    provider.s3_client.generate_presigned_url.side_effect = unreachable

    assert provider.file_exists("audio/x.mp3") is False
    assert provider.open("audio/x.mp3") is None
    assert provider.get_file_url("audio/x.mp3") == ""


def test_public_base_url_skips_signing():
    provider = _provider(public_base_url="https://cdn.example")
    assert provider.get_file_url("audio/x.mp3") == "https://cdn.example/audio/x.mp3"
    provider.s3_client.generate_presigned_url.assert_not_called()
