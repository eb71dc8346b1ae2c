"""
Pytest configuration and fixtures for all tests.
"""

import os
import sys
import pytest

# Add src to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Set up test environment variables before importing any modules
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'INFO')


SAMPLE_HEADERS = """Return-path: <>
Received: from mx.example.net ([192.0.2.10])
    by mail.example.org with ESMTP; Fri, 04 May 2012 16:18:13 +0200
From: <Mailer-Daemon@mail.example.org> (Mail Delivery System)
To: sender@example.org
Subject: Undelivered Mail Returned to Sender
Date: Fri, 04 May 2012 15:25:09 +0200
MIME-Version: 1.0
Content-Type: multipart/report; report-type=delivery-status;
 boundary="HTB3nt3RR7vw/QMPR4kDPbKg+XWjXIKdC/rfHQ=="

"""

SAMPLE_BODY = """
This is a MIME-encapsulated message.

--HTB3nt3RR7vw/QMPR4kDPbKg+XWjXIKdC/rfHQ==
Content-Description: Notification
Content-Type: text/plain

I'm sorry to have to inform you that your message could not
be delivered to one or more recipients. It's attached below.

<test-dsn-failure@gmail.com>: 550-5.1.1 The email account that you tried to reach does not exist.

--HTB3nt3RR7vw/QMPR4kDPbKg+XWjXIKdC/rfHQ==
Content-Description: Delivery report
Content-Type: message/delivery-status

Reporting-MTA: dns; mail.example.org
Arrival-Date: Fri, 04 May 2012 15:25:09 +0200

Final-Recipient: rfc822; test-dsn-failure@gmail.com
Status: 5.1.1
Action: failed
Last-Attempt-Date: Fri, 04 May 2012 15:25:09 +0200
Diagnostic-Code: smtp; 550-5.1.1 The email account that you tried to reach does not exist. Please try
550-5.1.1 double-checking the recipient's email address for typos or
550-5.1.1 unnecessary spaces. Learn more at
550 5.1.1 http://support.google.com/mail/bin/answer.py?answer=6596 t12si10077186weq.36

--HTB3nt3RR7vw/QMPR4kDPbKg+XWjXIKdC/rfHQ==
Content-Description: Undelivered Message
Content-Type: message/rfc822

From: sender@example.org
To: test-dsn-failure@gmail.com
Subject: =?utf-8?B?SGVsbG8gd29ybGQ=?=
Message-ID: <1234@example.org>

Original body.

--HTB3nt3RR7vw/QMPR4kDPbKg+XWjXIKdC/rfHQ==--
"""


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables for all tests."""
    # Environment variables are already set above
    yield


@pytest.fixture
def dsn_headers():
    """Headers of a Postfix-style delivery status notification."""
    return SAMPLE_HEADERS


@pytest.fixture
def dsn_message():
    """Complete delivery status notification with one failed recipient."""
    return SAMPLE_HEADERS + SAMPLE_BODY
