"""
AWS Lambda handler for processing bounce notifications from SQS.

Thin orchestration layer that delegates to BounceProcessor.
Policy: Always delete messages (no retries). Errors logged to CloudWatch.
"""

import logging
import os
from typing import Dict, Any

from domain.bounce_processor import BounceProcessor

ENVIRONMENT = os.environ.get('ENVIRONMENT', 'dev')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Configure logging
logger = logging.getLogger()
logger.setLevel(LOG_LEVEL)

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(LOG_LEVEL)
    formatter = logging.Formatter('%(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# Initialize processor once at module level (reused across invocations)
bounce_processor = BounceProcessor()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Process bounce notifications from SQS.

    Args:
        event: Lambda event with SQS records
        context: Lambda context

    Returns:
        Dict with batchItemFailures (always empty - no retries)
    """
    logger.info("=" * 70)
    logger.info(f"DSN Bounce Processor - Started (environment: {ENVIRONMENT})")
    logger.info("=" * 70)

    records = event.get('Records', [])
    logger.info(f"Processing batch of {len(records)} message(s)")

    results = []
    for record in records:
        result = bounce_processor.process_ses_record(record)
        results.append(result)

        if not result.success:
            logger.warning(
                f"Processed message {result.message_id} with ERRORS: "
                f"{result.error_message}"
            )
        elif result.is_dsn:
            failed = result.report.failed_recipients
            logger.info(
                f"Parsed DSN {result.message_id}: {len(result.report.status)} recipient(s), "
                f"{len(failed)} permanent failure(s)"
            )
        else:
            logger.info(f"Message {result.message_id} is not a DSN")

    logger.info("=" * 70)
    logger.info(f"Batch processing complete: {len(results)} message(s)")
    success_count = sum(1 for r in results if r.success)
    dsn_count = sum(1 for r in results if r.is_dsn)
    error_count = len(results) - success_count
    logger.info(f"  Success: {success_count}")
    logger.info(f"  DSN reports: {dsn_count}")
    logger.info(f"  Errors: {error_count}")
    logger.info("=" * 70)

    return {"batchItemFailures": []}
