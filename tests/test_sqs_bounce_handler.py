"""
Tests for SQS Bounce Handler Lambda function.
"""

import json
import pytest
from unittest.mock import Mock, patch, MagicMock
from botocore.exceptions import ClientError
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Import the handler and dependencies
import sqs_bounce_handler
from domain.models import ProcessingResult


def make_record(message_id, key):
    notification = {
        'mail': {
            'timestamp': '2025-01-01T00:00:00.000Z',
            'source': 'MAILER-DAEMON@mail.example.org',
            'commonHeaders': {'subject': 'Undelivered Mail Returned to Sender'}
        },
        'receipt': {'action': {'type': 'S3', 'bucketName': 'ses-bucket', 'objectKey': key}}
    }
    return {'messageId': message_id, 'body': json.dumps(notification)}


@pytest.fixture
def sqs_event():
    """SQS event with one SES notification."""
    return {'Records': [make_record('msg-1', 'bounces/msg-1.eml')]}


@pytest.fixture
def mock_context():
    """Mock Lambda context."""
    context = Mock()
    context.request_id = "test-request-id"
    context.invoked_function_arn = "arn:aws:lambda:us-west-2:123456789012:function:test"
    context.function_name = "dsn-bounce-handler-test"
    return context


class TestLambdaHandler:
    """Test the main Lambda handler function."""

    @patch('services.s3.s3_client')
    def test_lambda_handler_success(self, mock_s3_client, sqs_event, mock_context, dsn_message):
        """Test successful DSN processing."""
        mock_s3_client.get_object.return_value = {
            'Body': MagicMock(read=lambda: dsn_message.encode('utf-8'))
        }

        with patch.object(sqs_bounce_handler.bounce_processor, 'reports_bucket', 'reports-bucket'):
            response = sqs_bounce_handler.lambda_handler(sqs_event, mock_context)

        assert response == {"batchItemFailures": []}
        mock_s3_client.get_object.assert_called_once()
        mock_s3_client.put_object.assert_called_once()
        assert mock_s3_client.put_object.call_args.kwargs['Key'].endswith('msg-1.json')

    @patch('services.s3.s3_client')
    def test_lambda_handler_without_report_storage(self, mock_s3_client, sqs_event, mock_context, dsn_message):
        """Test reports are not uploaded when no bucket is configured."""
        mock_s3_client.get_object.return_value = {
            'Body': MagicMock(read=lambda: dsn_message.encode('utf-8'))
        }

        with patch.object(sqs_bounce_handler.bounce_processor, 'reports_bucket', ''):
            response = sqs_bounce_handler.lambda_handler(sqs_event, mock_context)

        assert response == {"batchItemFailures": []}
        mock_s3_client.put_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_lambda_handler_s3_error(self, mock_s3_client, sqs_event, mock_context):
        """Test handling of S3 fetch errors - message is consumed."""
        mock_s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'Not found'}},
            'GetObject'
        )

        response = sqs_bounce_handler.lambda_handler(sqs_event, mock_context)

        # Should return empty batchItemFailures (no retry)
        assert response == {"batchItemFailures": []}

    @patch('services.s3.s3_client')
    def test_lambda_handler_invalid_ses_notification(self, mock_s3_client, mock_context):
        """Test handling of invalid SES notification."""
        event = {
            'Records': [{
                'messageId': 'test-msg-1',
                'body': json.dumps({'invalid': 'structure'})
            }]
        }

        response = sqs_bounce_handler.lambda_handler(event, mock_context)

        assert response == {"batchItemFailures": []}
        mock_s3_client.get_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_lambda_handler_multiple_records(self, mock_s3_client, mock_context, dsn_message):
        """Test processing a batch mixing DSNs and regular messages."""
        contents = {
            'bounces/msg-1.eml': dsn_message.encode('utf-8'),
            'bounces/msg-2.eml': b"From: someone@example.org\nSubject: Re: hello\n\nThanks!\n",
            'bounces/msg-3.eml': dsn_message.encode('utf-8'),
        }
        mock_s3_client.get_object.side_effect = lambda Bucket, Key: {
            'Body': MagicMock(read=lambda: contents[Key])
        }
        event = {'Records': [make_record(f'msg-{i}', f'bounces/msg-{i}.eml') for i in (1, 2, 3)]}

        with patch.object(sqs_bounce_handler.bounce_processor, 'reports_bucket', 'reports-bucket'):
            response = sqs_bounce_handler.lambda_handler(event, mock_context)

        assert response == {"batchItemFailures": []}
        assert mock_s3_client.get_object.call_count == 3
        stored_keys = [c.kwargs['Key'] for c in mock_s3_client.put_object.call_args_list]
        assert len(stored_keys) == 2
        assert stored_keys[0].endswith('msg-1.json')
        assert stored_keys[1].endswith('msg-3.json')

    def test_lambda_handler_always_consumes_messages(self, mock_context):
        """Test that failed records are never reported for retry."""
        event = {'Records': [make_record('msg-1', 'a.eml'), make_record('msg-2', 'b.eml')]}
        results = [
            ProcessingResult(success=False, message_id='msg-1', error_message='S3 error'),
            ProcessingResult(success=False, message_id='msg-2', error_message='Parse error'),
        ]

        with patch.object(sqs_bounce_handler.bounce_processor, 'process_ses_record',
                          side_effect=results) as mock_process:
            response = sqs_bounce_handler.lambda_handler(event, mock_context)

        assert response == {"batchItemFailures": []}
        assert mock_process.call_count == 2

    def test_lambda_handler_empty_event(self, mock_context):
        """Test an event without records."""
        response = sqs_bounce_handler.lambda_handler({}, mock_context)

        assert response == {"batchItemFailures": []}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
