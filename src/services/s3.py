"""
S3 operations for the bounce handler.

SES receipt rules store every message sent to the bounce mailbox in S3; this
module reads those raw messages back and stores the parsed reports.
"""

import logging
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

REPORT_CONTENT_TYPE = 'application/json; charset=utf-8'

# Configure S3 client with timeouts to prevent infinite hangs
s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=60      # 60 seconds max for reading response
)

# Initialize S3 client at module level (thread-safe, reused across invocations)
s3_client = boto3.client('s3', config=s3_config)
logger.info("S3 client initialized with timeouts: connect=10s, read=60s, max_attempts=1")


def fetch_message_from_s3(bucket: str, key: str) -> bytes:
    """
    Fetch a raw bounce message stored by an SES receipt rule.

    Args:
        bucket: Bucket of the SES receipt rule S3 action
        key: Object key of the message (receipt.action.objectKey)

    Returns:
        bytes: The raw message content (RFC 822)

    Raises:
        ValueError: If the bucket or key does not exist
        ClientError: For any other S3 failure
    """
    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
        return response['Body'].read()
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', '')
        if error_code == 'NoSuchKey':
            # Usually a lifecycle rule removed the message before it was processed
            logger.error(f"Bounce message not found: s3://{bucket}/{key}")
            raise ValueError(f"Bounce message not found in S3: s3://{bucket}/{key}")
        elif error_code == 'NoSuchBucket':
            logger.error(f"SES receipt bucket not found: {bucket}")
            raise ValueError(f"SES receipt bucket not found: {bucket}")
        else:
            logger.error(f"Failed to fetch bounce message s3://{bucket}/{key}: {e}")
            raise


def report_key(prefix: str, message_id: str) -> str:
    """
    Build the object key of a parsed report.

    Example:
        >>> report_key("dsn-reports/", "4f0c2a")
        'dsn-reports/4f0c2a.json'
    """
    return f"{prefix}{message_id}.json"


def upload_report(
    bucket: str,
    key: str,
    content: str,
    metadata: Optional[Dict[str, str]] = None
) -> None:
    """
    Upload a parsed delivery report (JSON) to S3.

    Args:
        bucket: Reports bucket name
        key: Object key, see report_key()
        content: Report serialized as JSON
        metadata: S3 user metadata (e.g. recipient counts), ASCII values only

    Raises:
        ClientError: If S3 operation fails
        ValueError: If parameters are invalid
    """
    if not bucket:
        raise ValueError("S3 bucket name cannot be empty")
    if not key:
        raise ValueError("S3 object key cannot be empty")
    if content is None:
        raise ValueError("Content cannot be None")

    body = content.encode('utf-8')
    try:
        logger.info(
            f"Uploading delivery report to S3: bucket={bucket}, key={key}, "
            f"size={len(body)} bytes"
        )

        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=REPORT_CONTENT_TYPE,
            Metadata=metadata or {}
        )

        logger.info(f"Stored delivery report: s3://{bucket}/{key}")

    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_message = e.response.get('Error', {}).get('Message', str(e))

        logger.error(
            f"Failed to upload delivery report to S3: "
            f"bucket={bucket}, key={key}, "
            f"error_code={error_code}, error_message={error_message}"
        )

        raise
