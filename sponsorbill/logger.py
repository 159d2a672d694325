"""
SponsorBill Unified Logging System

This module provides the package-wide logging interface:
1. Structured CloudWatch-optimized logging for production
2. AWS/Stripe/HTTP noise suppression for clean development logs
3. Component loggers for the invoice pipeline and document rendering
"""

import logging

from .config import env
from .config.logging import (
  setup_logging,
  get_logger,
  log_error,
  log_pipeline_outcome,
  performance_timer,
)

setup_logging()

logger = get_logger("sponsorbill")

if env.is_development():
  logging.getLogger("boto3").setLevel(logging.WARNING)
  logging.getLogger("botocore").setLevel(logging.WARNING)
  logging.getLogger("urllib3").setLevel(logging.WARNING)
  logging.getLogger("stripe").setLevel(logging.WARNING)
  logging.getLogger("httpx").setLevel(logging.WARNING)
  logging.getLogger("httpcore").setLevel(logging.WARNING)

pipeline_logger = get_logger("sponsorbill.pipeline")
documents_logger = get_logger("sponsorbill.documents")


__all__ = [
  "logger",
  "pipeline_logger",
  "documents_logger",
  "log_error",
  "log_pipeline_outcome",
  "performance_timer",
  "get_logger",
]
