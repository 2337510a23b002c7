import logging
import sys
from loguru import logger
import json
import os
import boto3
from botocore.client import Config
from app.core.config import settings

# Object prefix for rotated log files in Spaces
LOG_ARCHIVE_PREFIX = "logs/widget-platform"

# Extra keys that must never reach a sink verbatim
REDACTED_KEYS = {"api_key", "apiKey", "credential", "authorization"}


def _redact(extra: dict) -> dict:
    return {k: ("***" if k in REDACTED_KEYS else v) for k, v in extra.items()}


def serialize(record):
    exception = record["exception"]
    if exception:
        exception = {
            "type": exception.type.__name__,
            "value": str(exception.value),
            "traceback": bool(exception.traceback),
        }

    extra = {k: v for k, v in record["extra"].items() if k != "serialized"}
    subset = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "extra": _redact(extra),
        "exception": exception,
    }
    return json.dumps(subset, default=str)

def json_formatter(record):
    record["extra"]["serialized"] = serialize(record)
    return "{extra[serialized]}\n"

def health_filter(record):
    """
    Drops records produced while serving /health.
    """
    return record["extra"].get("path") != "/health" and "/health" not in record["message"]

def dynamic_console_formatter(record):
    """
    Console format; records logged outside a request are tagged SYSTEM.
    """
    req_id = record["extra"].get("request_id", "SYSTEM")

    fmt = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        f"<cyan>{req_id}</cyan> - "
        "<level>{message}</level>"
    )

    extra_items = {k: v for k, v in record["extra"].items() if k not in ["serialized", "request_id"]}
    if extra_items:
        # Loguru formats the returned string again, so braces must be escaped
        extra_str = str(_redact(extra_items)).replace("{", "{{").replace("}", "}}")
        fmt += f" <magenta>{extra_str}</magenta>"

    return fmt + "\n"

_spaces_client = None

def get_spaces_client():
    global _spaces_client
    if _spaces_client is None:
        if all([
            settings.SPACES_ACCESS_KEY_ID,
            settings.SPACES_SECRET_ACCESS_KEY,
            settings.SPACES_BUCKET,
            settings.SPACES_ENDPOINT
        ]):
            try:
                session = boto3.session.Session()
                _spaces_client = session.client(
                    's3',
                    region_name=settings.SPACES_REGION,
                    endpoint_url=settings.SPACES_ENDPOINT,
                    aws_access_key_id=settings.SPACES_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.SPACES_SECRET_ACCESS_KEY,
                    config=Config(signature_version='s3v4')
                )
            except Exception as e:
                sys.stderr.write(f"Failed to initialize Spaces client: {e}\n")
    return _spaces_client

def upload_to_spaces(file_path):
    """
    After-rotation hook for the file sinks: ships the rotated file to Spaces.

    Must not use the logger itself (the sink is enqueued and holds its lock).
    """
    client = get_spaces_client()
    if not client:
        sys.stderr.write(f"Spaces not configured, keeping rotated log locally: {file_path}\n")
        return

    try:
        file_name = os.path.basename(file_path)
        object_name = f"{LOG_ARCHIVE_PREFIX}/{settings.ENVIRONMENT}/{file_name}"

        client.upload_file(file_path, settings.SPACES_BUCKET, object_name)
        sys.stdout.write(f"Uploaded {file_name} to Spaces: {object_name}\n")
    except Exception as e:
        sys.stderr.write(f"Failed to upload {file_path} to Spaces: {e}\n")

class InterceptHandler(logging.Handler):
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the stdlib logging call
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

def setup_logging():
    logger.remove()

    # Human-readable console (DEBUG+)
    logger.add(
        sys.stdout,
        format=dynamic_console_formatter,
        filter=health_filter,
        level="DEBUG",
        backtrace=True,
        diagnose=settings.ENVIRONMENT == "local",
        enqueue=True
    )

    if settings.ENVIRONMENT in ["staging", "production"]:
        os.makedirs("logs", exist_ok=True)

        # JSON file for monitoring (INFO+)
        logger.add(
            "logs/app.log",
            format=json_formatter,
            filter=health_filter,
            level="INFO",
            rotation="10 MB",
            compression=upload_to_spaces,
            backtrace=True,
            diagnose=False,
            enqueue=True
        )

        # Error-only JSON file for alerts (ERROR+)
        logger.add(
            "logs/errors.log",
            format=json_formatter,
            filter=health_filter,
            level="ERROR",
            rotation="10 MB",
            compression=upload_to_spaces,
            backtrace=True,
            diagnose=False,
            enqueue=True
        )
    else:
        sys.stdout.write(f"File logging disabled for environment: {settings.ENVIRONMENT}\n")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in ["uvicorn", "uvicorn.access", "fastapi", "openai", "httpx", "sqlalchemy.engine"]:
        _logger = logging.getLogger(name)
        _logger.handlers = [InterceptHandler()]
        _logger.propagate = False
        # openai/httpx DEBUG logs include full request bodies (prompts, keys)
        _logger.setLevel(logging.WARNING if name == "sqlalchemy.engine" else logging.INFO)

    return logger
