"""
Bounce processing pipeline - core business logic.

This module handles the end-to-end processing of SES notifications received
for a bounce mailbox:
1. Parse SES notification from SQS record
2. Fetch the raw message from S3
3. Check the headers for a Delivery Status Notification
4. Parse the DSN report
5. Store the report as JSON in S3 (if configured)

All errors are caught and returned as ProcessingResult with success=False.
No exceptions propagate out of the public methods.
"""

import json
import logging
import os
from typing import Dict, Any, Optional

from .models import BounceMetadata, DeliveryReport, ProcessingResult
from services import dsn as dsn_service
from services import email as email_service
from services import s3 as s3_service

logger = logging.getLogger(__name__)

# Configuration from environment
REPORTS_BUCKET = os.environ.get('REPORTS_S3_BUCKET', '')
REPORTS_PREFIX = os.environ.get('REPORTS_S3_PREFIX', 'dsn-reports/')


class BounceProcessor:
    """
    Handles end-to-end bounce processing pipeline.

    Processes SES notifications and extracts the delivery status of every
    recipient. Returns ProcessingResult for explicit success/failure handling.
    """

    def __init__(self, reports_bucket: Optional[str] = None, reports_prefix: Optional[str] = None):
        """
        Initialize bounce processor.

        Args:
            reports_bucket: Bucket where parsed reports are stored
                (default: REPORTS_S3_BUCKET, empty disables the upload)
            reports_prefix: Key prefix of stored reports (default: REPORTS_S3_PREFIX)
        """
        self.reports_bucket = REPORTS_BUCKET if reports_bucket is None else reports_bucket
        self.reports_prefix = REPORTS_PREFIX if reports_prefix is None else reports_prefix

    def process_ses_record(self, record: Dict[str, Any]) -> ProcessingResult:
        """
        Process a single SQS record containing SES notification.

        Args:
            record: SQS record dict containing SES notification

        Returns:
            ProcessingResult with success=True or success=False (errors logged).
            A message that is not a DSN is a success without report.
        """
        message_id = record.get('messageId', 'UNKNOWN')
        logger.info(f"Processing SQS message: {message_id}")

        try:
            metadata = self._parse_ses_notification(record)
            logger.info(f"Parsed: from={metadata.from_address}, subject={metadata.subject}")

            raw_message = self._fetch_message(metadata)

            report = self._parse_report(raw_message)
            if report is None:
                return ProcessingResult(success=True, message_id=message_id, metadata=metadata)

            report.uid = message_id
            self._store_report(report)
            self._log_report(metadata, report)

            return ProcessingResult(
                success=True,
                message_id=message_id,
                metadata=metadata,
                report=report
            )

        except Exception as e:
            logger.error(f"Failed to process {message_id}: {e}", exc_info=True)

            return ProcessingResult(
                success=False,
                message_id=message_id,
                error_message=str(e)
            )

    def _parse_ses_notification(self, record: Dict[str, Any]) -> BounceMetadata:
        """
        Parse SQS record and extract SES notification metadata.

        Handles both direct SES->SQS and SNS-wrapped notifications.

        Args:
            record: SQS record dict

        Returns:
            BounceMetadata: Structured bounce metadata

        Raises:
            ValueError: If notification structure is invalid
            json.JSONDecodeError: If JSON parsing fails
        """
        message_id = record.get('messageId', 'UNKNOWN')

        sqs_body = json.loads(record['body'])

        # Check if wrapped in SNS (optional setup: SES -> SNS -> SQS)
        if sqs_body.get('Type') == 'Notification' and 'Message' in sqs_body:
            logger.info("Unwrapping SNS message (SES -> SNS -> SQS)")
            ses_notification = json.loads(sqs_body['Message'])
        else:
            ses_notification = sqs_body

        if 'mail' not in ses_notification or 'receipt' not in ses_notification:
            raise ValueError("SES notification missing 'mail' or 'receipt' fields")

        mail = ses_notification['mail']
        receipt = ses_notification['receipt']
        common_headers = mail.get('commonHeaders', {})

        # Bounces are sent with a null return path, so fall back to 'source'
        from_field = common_headers.get('from', [])
        if isinstance(from_field, list) and len(from_field) > 0:
            from_address = from_field[0]
        elif isinstance(from_field, str) and from_field:
            from_address = from_field
        else:
            from_address = mail.get('source', 'Unknown')

        action = receipt.get('action', {})
        bucket_name = action.get('bucketName')
        object_key = action.get('objectKey')

        if not bucket_name or not object_key:
            raise ValueError("Missing S3 location in SES notification")

        return BounceMetadata(
            message_id=message_id,
            from_address=from_address,
            subject=common_headers.get('subject', 'No Subject'),
            timestamp=mail.get('timestamp', ''),
            bucket_name=bucket_name,
            object_key=object_key
        )

    def _fetch_message(self, metadata: BounceMetadata) -> str:
        """
        Fetch the raw message from S3 as text.

        Raises:
            ValueError: If S3 fetch fails
        """
        logger.info(f"Fetching message from: s3://{metadata.bucket_name}/{metadata.object_key}")

        raw_bytes = s3_service.fetch_message_from_s3(
            metadata.bucket_name,
            metadata.object_key
        )
        logger.info(f"Fetched {len(raw_bytes):,} bytes from S3")

        # Reports are US-ASCII, undecodable bytes only occur in the original message
        return raw_bytes.decode('utf-8', errors='replace')

    def _parse_report(self, raw_message: str) -> Optional[DeliveryReport]:
        """
        Parse the DSN carried by a raw message.

        Returns:
            DeliveryReport, or None if the message is not a (parseable) DSN

        Raises:
            DsnParseError: If parsing fails unexpectedly (caught by caller)
        """
        headers = email_service.extract_header_block(raw_message)
        if not dsn_service.is_dsn(headers):
            logger.info("Message is not a delivery status notification, skipping")
            return None

        report = dsn_service.try_create(raw_message)
        if report is None:
            logger.warning("Delivery status notification could not be parsed, skipping")
        return report

    def _store_report(self, report: DeliveryReport) -> None:
        """Upload the report to S3 when a reports bucket is configured."""
        if not self.reports_bucket:
            logger.info("Report storage not configured, skipping")
            return

        s3_service.upload_report(
            bucket=self.reports_bucket,
            key=s3_service.report_key(self.reports_prefix, report.uid),
            content=json.dumps(report.to_dict(), ensure_ascii=False),
            metadata={
                'recipients': str(len(report.status)),
                'failed-recipients': str(len(report.failed_recipients)),
            }
        )

    def _log_report(self, metadata: BounceMetadata, report: DeliveryReport) -> None:
        """Log parsed report summary."""
        logger.info("=" * 50)
        logger.info("DELIVERY STATUS NOTIFICATION PARSED")
        logger.info(f"From: {metadata.from_address}")
        logger.info(f"Reporting-MTA: {report.reporting_mta}")
        logger.info(f"Recipients: {len(report.status)}")

        for address, status in report.status.items():
            logger.info(f"  {address}: {status}")

        subjects = report.get_original_message_header('Subject', decode=True)
        if subjects:
            logger.info(f"Original subject: {subjects[0]}")

        logger.info("=" * 50)
