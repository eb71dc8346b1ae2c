"""
Tests for the bounce processing pipeline.
"""

import json
import pytest
from unittest.mock import patch, MagicMock
from botocore.exceptions import ClientError
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.bounce_processor import BounceProcessor


def make_sqs_record(message_id="msg-1", bucket="ses-bucket", key="bounces/msg-1.eml",
                    from_field=None, sns_wrapped=False):
    """Build an SQS record carrying an SES receipt notification."""
    common_headers = {'subject': 'Undelivered Mail Returned to Sender'}
    if from_field is not None:
        common_headers['from'] = from_field

    action = {'type': 'S3'}
    if bucket:
        action['bucketName'] = bucket
    if key:
        action['objectKey'] = key

    notification = {
        'notificationType': 'Received',
        'mail': {
            'timestamp': '2025-01-01T00:00:00.000Z',
            'source': 'MAILER-DAEMON@mail.example.org',
            'commonHeaders': common_headers
        },
        'receipt': {'action': action}
    }

    body = json.dumps(notification)
    if sns_wrapped:
        body = json.dumps({'Type': 'Notification', 'Message': body})

    return {'messageId': message_id, 'body': body}


def s3_object(content):
    return {'Body': MagicMock(read=lambda: content)}


class TestProcessSesRecord:
    """Test BounceProcessor.process_ses_record()."""

    @patch('services.s3.s3_client')
    def test_process_dsn_and_store_report(self, mock_s3_client, dsn_message):
        """Test a DSN is parsed and its report stored in S3."""
        # Setup
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='reports-bucket', reports_prefix='dsn/')

        # Execute
        result = processor.process_ses_record(make_sqs_record())

        # Assert
        assert result.success is True
        assert result.is_dsn is True
        assert result.report.uid == "msg-1"
        assert result.report.failed_recipients == ["test-dsn-failure@gmail.com"]
        assert result.metadata.from_address == "MAILER-DAEMON@mail.example.org"

        mock_s3_client.get_object.assert_called_once_with(
            Bucket='ses-bucket',
            Key='bounces/msg-1.eml'
        )
        mock_s3_client.put_object.assert_called_once()
        call_kwargs = mock_s3_client.put_object.call_args.kwargs
        assert call_kwargs['Bucket'] == 'reports-bucket'
        assert call_kwargs['Key'] == 'dsn/msg-1.json'
        assert call_kwargs['ContentType'] == 'application/json; charset=utf-8'
        assert call_kwargs['Metadata'] == {'recipients': '1', 'failed-recipients': '1'}

        stored = json.loads(call_kwargs['Body'].decode('utf-8'))
        assert stored['uid'] == "msg-1"
        assert stored['reporting_mta'] == "dns; mail.example.org"
        recipient = stored['status']['test-dsn-failure@gmail.com']
        assert recipient['most_significant_status_code'] == "5.1.1"
        assert recipient['is_mail_address_unknown'] is True

    @patch('services.s3.s3_client')
    def test_process_dsn_without_report_storage(self, mock_s3_client, dsn_message):
        """Test no upload happens when no reports bucket is configured."""
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record(make_sqs_record())

        assert result.success is True
        assert result.is_dsn is True
        mock_s3_client.put_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_process_regular_message(self, mock_s3_client):
        """Test a message that is not a DSN is a success without report."""
        mock_s3_client.get_object.return_value = s3_object(
            b"Return-path: <sender@example.org>\r\nSubject: Hello\r\n\r\nJust a reply.\r\n"
        )
        processor = BounceProcessor(reports_bucket='reports-bucket')

        result = processor.process_ses_record(make_sqs_record())

        assert result.success is True
        assert result.is_dsn is False
        assert result.report is None
        mock_s3_client.put_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_process_unparseable_dsn(self, mock_s3_client, dsn_message):
        """Test a DSN with an invalid status is skipped without error."""
        broken = dsn_message.replace("Status: 5.1.1", "Status: unknown")
        mock_s3_client.get_object.return_value = s3_object(broken.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='reports-bucket')

        result = processor.process_ses_record(make_sqs_record())

        assert result.success is True
        assert result.is_dsn is False
        mock_s3_client.put_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_process_sns_wrapped_notification(self, mock_s3_client, dsn_message):
        """Test SES -> SNS -> SQS notifications are unwrapped."""
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record(make_sqs_record(sns_wrapped=True))

        assert result.success is True
        assert result.is_dsn is True

    @patch('services.s3.s3_client')
    def test_process_from_header_preferred(self, mock_s3_client, dsn_message):
        """Test the From header is used when SES provides it."""
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record(
            make_sqs_record(from_field=["Mail Delivery System <MAILER-DAEMON@example.net>"])
        )

        assert result.metadata.from_address == "Mail Delivery System <MAILER-DAEMON@example.net>"

    @patch('services.s3.s3_client')
    def test_process_missing_s3_location(self, mock_s3_client):
        """Test a notification without S3 action fails."""
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record(make_sqs_record(bucket=None, key=None))

        assert result.success is False
        assert "Missing S3 location" in result.error_message
        mock_s3_client.get_object.assert_not_called()

    def test_process_invalid_json(self):
        """Test an SQS body that is not JSON fails."""
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record({'messageId': 'msg-1', 'body': 'not json'})

        assert result.success is False
        assert result.message_id == 'msg-1'

    def test_process_missing_mail_fields(self):
        """Test a JSON body that is not an SES notification fails."""
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record({'messageId': 'msg-1', 'body': json.dumps({'foo': 'bar'})})

        assert result.success is False
        assert "missing 'mail' or 'receipt'" in result.error_message

    @patch('services.s3.s3_client')
    def test_process_s3_object_missing(self, mock_s3_client):
        """Test a missing S3 object fails."""
        mock_s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'The specified key does not exist.'}},
            'GetObject'
        )
        processor = BounceProcessor(reports_bucket='')

        result = processor.process_ses_record(make_sqs_record())

        assert result.success is False
        assert "Bounce message not found in S3" in result.error_message

    @patch('services.s3.s3_client')
    def test_process_report_upload_failure(self, mock_s3_client, dsn_message):
        """Test a failed report upload is reported as a failure."""
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        mock_s3_client.put_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}},
            'PutObject'
        )
        processor = BounceProcessor(reports_bucket='reports-bucket')

        result = processor.process_ses_record(make_sqs_record())

        assert result.success is False
        assert "AccessDenied" in result.error_message

    @patch('services.s3.s3_client')
    def test_process_unexpected_parse_error(self, mock_s3_client, dsn_message):
        """Test an unexpected parser failure is reported as a failure."""
        mock_s3_client.get_object.return_value = s3_object(dsn_message.encode('utf-8'))
        processor = BounceProcessor(reports_bucket='')

        with patch('domain.models.Status.create', side_effect=RuntimeError("boom")):
            result = processor.process_ses_record(make_sqs_record())

        assert result.success is False
        assert "boom" in result.error_message


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
