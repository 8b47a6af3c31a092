# core/aws_client.py
"""
Centralized AWS client factory to ensure proper credential handling.
This module creates AWS clients with explicit credential configuration.
"""
import os
from typing import Dict, Optional

import boto3
from botocore.config import Config

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.logger import logger


def _credentials(settings: Settings) -> Dict[str, Optional[str]]:
    # Get credentials from settings (which loads from .env) or environment
    return {
        "aws_access_key_id": settings.AWS_ACCESS_KEY_ID or os.getenv("AWS_ACCESS_KEY_ID"),
        "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY or os.getenv("AWS_SECRET_ACCESS_KEY"),
        "aws_session_token": settings.AWS_SESSION_TOKEN or os.getenv("AWS_SESSION_TOKEN"),
    }


def get_bedrock_runtime_client(settings: Settings = default_settings):
    """Get Bedrock Runtime client with bounded latency and no SDK-level retries."""
    try:
        config = Config(
            read_timeout=settings.INFERENCE_READ_TIMEOUT_SECS,
            connect_timeout=settings.INFERENCE_CONNECT_TIMEOUT_SECS,
            retries={"max_attempts": 0}
        )
        client = boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            config=config,
            **_credentials(settings)
        )
        logger.info("Bedrock Runtime client initialized with credentials")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize Bedrock Runtime client: {str(e)}")
        raise


def get_sqs_client(settings: Settings = default_settings):
    """Get SQS client with proper credentials."""
    try:
        # Long polls must outlive the receive wait time
        config = Config(read_timeout=settings.SQS_WAIT_TIME_SECS + 10)
        client = boto3.client(
            "sqs",
            region_name=settings.SQS_REGION,
            config=config,
            **_credentials(settings)
        )
        logger.info("SQS client initialized with credentials")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize SQS client: {str(e)}")
        raise


def validate_aws_credentials(settings: Settings = default_settings) -> bool:
    """Validate that AWS credentials are properly configured."""
    creds = _credentials(settings)

    if not creds["aws_access_key_id"] or not creds["aws_secret_access_key"]:
        logger.warning("Missing AWS credentials in both settings and environment variables")
        logger.info("AWS credentials not found. Falling back to the default boto3 credential chain "
                    "(instance profile, ECS task role or ~/.aws/credentials)")
        return False

    logger.info("AWS credentials found and validated")
    return True
