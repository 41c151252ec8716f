"""S3 service: the remote blob store used by the upload pipeline."""

import configparser
import logging
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
)
from mypy_boto3_s3 import S3Client

from folder_uploader.errors import StorageError, TransientStorageError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
TRANSIENT_ERROR_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "InternalError",
        "RequestTimeout",
    }
)


def get_available_profiles() -> list[str]:
    """Get list of available AWS profiles from ~/.aws/config and ~/.aws/credentials."""
    profiles: set[str] = set()

    credentials_path = Path.home() / ".aws" / "credentials"
    if credentials_path.exists():
        config = configparser.ConfigParser()
        config.read(credentials_path)
        profiles.update(config.sections())

    config_path = Path.home() / ".aws" / "config"
    if config_path.exists():
        config = configparser.ConfigParser()
        config.read(config_path)
        for section in config.sections():
            # Config file uses "profile name" format
            if section.startswith("profile "):
                profiles.add(section.replace("profile ", ""))
            else:
                profiles.add(section)

    # Always include default
    profiles.add("default")

    return sorted(profiles)


def create_s3_client(profile: str, region: str = "us-west-2") -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: AWS region (default: us-west-2)

    Returns:
        Configured S3 client

    Raises:
        NoCredentialsError: If credentials are not found
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    client: S3Client = session.client("s3")
    return client


def is_transient_client_error(error: ClientError) -> bool:
    """True for throttling, overload and 5xx responses."""
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    code = error.response.get("Error", {}).get("Code", "")
    return status in TRANSIENT_STATUS_CODES or code in TRANSIENT_ERROR_CODES


def validate_bucket_access(client: S3Client, bucket: str) -> dict[str, Any]:
    """Validate that we can access the specified S3 bucket.

    Args:
        client: S3 client
        bucket: S3 bucket name

    Returns:
        Dictionary with validation result
    """
    try:
        client.head_bucket(Bucket=bucket)
        return {
            "success": True,
            "bucket": bucket,
            "error": None,
        }
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        if error_code == "404":
            error_msg = f"Bucket '{bucket}' does not exist"
        elif error_code == "403":
            error_msg = f"Access denied to bucket '{bucket}'"
        else:
            error_msg = str(e)
        return {
            "success": False,
            "bucket": bucket,
            "error": error_msg,
        }
    except NoCredentialsError:
        return {
            "success": False,
            "bucket": bucket,
            "error": "AWS credentials not found",
        }


class S3BlobStore:
    """Uploads objects into one bucket, translating botocore errors for the executor."""

    def __init__(self, client: S3Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def upload_blob(self, blob_name: str, stream: BinaryIO) -> None:
        """Upload a stream to s3://bucket/blob_name, overwriting any existing object.

        Raises:
            TransientStorageError: throttling, overload, 5xx or a dropped connection
            StorageError: any other client error
        """
        try:
            self.client.upload_fileobj(stream, self.bucket, blob_name)
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = e.response.get("Error", {}).get("Code", "Unknown")
            if is_transient_client_error(e):
                logger.warning(
                    "Transient S3 error uploading %s: %s (HTTP %s)", blob_name, code, status
                )
                raise TransientStorageError(str(e), status_code=status) from e
            logger.error("S3 rejected upload of %s: %s (HTTP %s)", blob_name, code, status)
            raise StorageError(str(e)) from e
        except (EndpointConnectionError, ConnectionClosedError) as e:
            logger.warning("Connection to S3 lost uploading %s: %s", blob_name, e)
            raise TransientStorageError(str(e)) from e
