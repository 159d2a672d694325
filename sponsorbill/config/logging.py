"""
Structured Logging Configuration for SponsorBill

This module provides structured logging optimized for AWS CloudWatch and
friendly to CLI searching when debugging invoice runs in production.

Key Features:
- Tiered logging (Critical/Operational/Debug) for cost optimization
- Structured JSON output for CloudWatch Insights queries
- Automatic log level management by environment
- Pipeline outcome tracking and error categorization
"""

import json
import logging
import logging.config
import time
import traceback
from datetime import UTC, datetime
from functools import wraps
from typing import Any

from sponsorbill.config.env import EnvConfig

APPLICATION_LOGGERS = [
  "sponsorbill",
  "sponsorbill.pipeline",
  "sponsorbill.documents",
]


class StructuredFormatter(logging.Formatter):
  """
  JSON formatter that creates searchable structured logs.

  Output format optimized for CloudWatch Insights queries:
  - Timestamp in ISO format
  - Consistent field names for filtering
  - Hierarchical component/action structure
  - Billing identifiers preserved as searchable fields
  """

  CONTEXT_FIELDS = (
    "action",
    "billing_event_id",
    "invoice_id",
    "invoice_number",
    "business_id",
    "outcome",
    "duration_ms",
  )

  def format(self, record: logging.LogRecord) -> str:
    log_entry = {
      "timestamp": datetime.fromtimestamp(record.created, UTC)
      .replace(tzinfo=None)
      .isoformat()
      + "Z",
      "level": record.levelname,
      "component": getattr(record, "component", record.name),
      "message": record.getMessage(),
    }

    for field in self.CONTEXT_FIELDS:
      if hasattr(record, field):
        log_entry[field] = getattr(record, field)

    if record.levelno >= logging.ERROR:
      if record.exc_info:
        log_entry["error"] = {
          "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
          "message": str(record.exc_info[1]) if record.exc_info[1] else "",
          "traceback": traceback.format_exception(*record.exc_info),
        }

      if hasattr(record, "error_category"):
        log_entry["error_category"] = record.error_category

    if hasattr(record, "metadata"):
      log_entry["metadata"] = record.metadata

    return json.dumps(log_entry, default=str, separators=(",", ":"))


class TieredLogFilter:
  """
  Filter logs by tier to control costs.

  Tier 1 (Critical): ERROR, CRITICAL
  Tier 2 (Operational): INFO, WARNING
  Tier 3 (Debug): DEBUG
  """

  def __init__(self, tier: str):
    self.tier = tier

  def filter(self, record: logging.LogRecord) -> bool:
    if self.tier == "critical":
      return record.levelno >= logging.ERROR
    elif self.tier == "operational":
      return logging.INFO <= record.levelno < logging.ERROR
    elif self.tier == "debug":
      return record.levelno == logging.DEBUG
    return True


def get_logging_config(environment: str | None = None) -> dict[str, Any]:
  """
  Generate logging configuration based on environment.

  - prod: INFO level, structured output, no debug logs
  - staging: INFO level, with debug logs enabled
  - test: WARNING level, minimal output for clean test runs
  - dev: DEBUG level, all logs enabled (unless LOG_LEVEL overrides)
  """
  env = environment or EnvConfig.ENVIRONMENT

  log_level_override = getattr(EnvConfig, "LOG_LEVEL", None)

  if env == "prod":
    default_level = "INFO"
    enable_debug = False
  elif env == "staging":
    default_level = "INFO"
    enable_debug = True
  elif env == "test":
    default_level = "WARNING"
    enable_debug = False
  else:  # dev
    default_level = log_level_override or "DEBUG"
    enable_debug = default_level == "DEBUG"

  app_handlers = ["critical", "operational"] if env != "dev" else ["console"]

  config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
      "structured": {
        "()": StructuredFormatter,
      },
      "simple": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
    },
    "filters": {
      "critical_filter": {"()": TieredLogFilter, "tier": "critical"},
      "operational_filter": {"()": TieredLogFilter, "tier": "operational"},
      "debug_filter": {"()": TieredLogFilter, "tier": "debug"},
    },
    "handlers": {
      "critical": {
        "class": "logging.StreamHandler",
        "level": "ERROR",
        "formatter": "structured",
        "filters": ["critical_filter"],
        "stream": "ext://sys.stderr",
      },
      "operational": {
        "class": "logging.StreamHandler",
        "level": "INFO",
        "formatter": "structured",
        "filters": ["operational_filter"],
        "stream": "ext://sys.stdout",
      },
      "console": {
        "class": "logging.StreamHandler",
        "level": default_level,
        "formatter": "simple" if env == "dev" else "structured",
        "stream": "ext://sys.stdout",
      },
    },
    "loggers": {
      name: {
        "level": default_level,
        "handlers": list(app_handlers),
        "propagate": False,
      }
      for name in APPLICATION_LOGGERS
    },
    "root": {
      "level": "WARNING",
      "handlers": ["critical"] if env != "dev" else ["console"],
    },
  }

  # Third-party loggers (reduced verbosity)
  config["loggers"].update(
    {
      "sqlalchemy": {
        "level": "WARNING",
        "handlers": ["operational"] if env != "dev" else ["console"],
        "propagate": False,
      },
      "stripe": {
        "level": "WARNING",
        "handlers": ["operational"] if env != "dev" else ["console"],
        "propagate": False,
      },
      "boto3": {
        "level": "WARNING",
        "handlers": ["critical"] if env != "dev" else ["console"],
        "propagate": False,
      },
      "botocore": {
        "level": "WARNING",
        "handlers": ["critical"] if env != "dev" else ["console"],
        "propagate": False,
      },
    }
  )

  if enable_debug:
    config["handlers"]["debug"] = {
      "class": "logging.StreamHandler",
      "level": "DEBUG",
      "formatter": "structured",
      "filters": ["debug_filter"],
      "stream": "ext://sys.stdout",
    }

    for logger_name in APPLICATION_LOGGERS:
      if env != "dev":
        config["loggers"][logger_name]["handlers"].append("debug")

  return config


def setup_logging(environment: str | None = None) -> None:
  """Initialize structured logging configuration."""
  config = get_logging_config(environment)
  logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
  """Get a logger with structured logging capabilities."""
  return logging.getLogger(name)


def log_error(
  logger: logging.Logger,
  error: Exception,
  component: str,
  action: str,
  error_category: str = "application",
  billing_event_id: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  """Log error with structured data for easy searching."""
  logger.error(
    f"Error in {component}.{action}: {error!s}",
    exc_info=True,
    extra={
      "component": component,
      "action": action,
      "error_category": error_category,
      "billing_event_id": billing_event_id,
      "metadata": metadata or {},
    },
  )


def log_pipeline_outcome(
  logger: logging.Logger,
  billing_event_id: str,
  outcome: str,
  duration_ms: float,
  invoice_number: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  """Log the terminal outcome of one invoice pipeline run."""
  level = logging.INFO if outcome == "OK" else logging.WARNING
  logger.log(
    level,
    f"Invoice pipeline for {billing_event_id} finished: {outcome} "
    f"({duration_ms:.2f}ms)",
    extra={
      "component": "pipeline",
      "action": "run_completed",
      "billing_event_id": billing_event_id,
      "outcome": outcome,
      "invoice_number": invoice_number,
      "duration_ms": duration_ms,
      "metadata": metadata or {},
    },
  )


def performance_timer(logger: logging.Logger, component: str, action: str):
  """Decorator to automatically log function execution time."""

  def decorator(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
      start_time = time.time()
      try:
        result = func(*args, **kwargs)
        duration_ms = (time.time() - start_time) * 1000

        logger.debug(
          f"{component}.{action} completed ({duration_ms:.2f}ms)",
          extra={
            "component": component,
            "action": action,
            "duration_ms": duration_ms,
          },
        )
        return result
      except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        log_error(
          logger,
          e,
          component,
          action,
          metadata={"duration_ms": duration_ms},
        )
        raise

    return wrapper

  return decorator
