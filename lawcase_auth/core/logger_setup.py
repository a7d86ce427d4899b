"""
Logger Setup
-----------
loguru configuration for the service, plus the redaction helpers used
wherever an email address or token would otherwise reach a log line.
"""

import sys
from loguru import logger
from lawcase_auth.core.config_manager import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

AUDIT_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
)


def _add_audit_file_sink() -> None:
    # Variable values never go to disk: diagnose would dump locals such as passwords
    logger.add(
        "logs/lawcase_auth_{time:YYYY-MM-DD}.log",
        rotation="500 MB",
        retention="30 days",
        level=settings.log_level,
        format=AUDIT_FILE_FORMAT,
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )


def configure_logger() -> None:
    """
    Replace loguru's default handler with the service's sinks.

    Debug runs log to stdout only, with variable values in tracebacks.
    Everything else also writes a daily audit file.
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=settings.log_level,
        colorize=True,
        backtrace=True,
        diagnose=settings.debug,
    )

    if not settings.debug:
        _add_audit_file_sink()

    logger.info(f"Logger configured with level: {settings.log_level}")


def redact_email(email: str) -> str:
    """``jo***@example.com`` for ``john@example.com``."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def redact_token(token: str) -> str:
    """Keep only a short prefix of a token so log lines can be correlated."""
    if not token:
        return "<empty>"
    return f"{token[:8]}..."


configure_logger()
