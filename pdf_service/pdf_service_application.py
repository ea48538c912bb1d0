import argparse
import logging
import os
import subprocess
import sys
from datetime import datetime
from pathlib import Path

import uvicorn

from pdf_service import pdf_service_controller

DEFAULT_HOST = "0.0.0.0"  # noqa: S104
DEFAULT_PORT = 3005


def setup_logging() -> Path:
    """
    Configure logging for the PDF service with both file and console output.

    The function:
    - Sets log level from LOG_LEVEL environment variable (defaults to INFO)
    - Creates timestamped log files in /opt/pdf-service/logs directory
    - Configures both file and console logging handlers
    - Uses format: timestamp - logger name - log level - message

    The log files are not rotated and a new file is created on each service start.

    Returns:
        Path: The path to the created log file
    """
    # Clean up any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "/opt/pdf-service/logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    current_time = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"pdf-service_{current_time}.log"

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Configure file handler (no rotation)
    file_handler = logging.FileHandler(
        log_file,
        encoding="utf-8",
        delay=False,  # Create file immediately
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    configured_level = getattr(logging, log_level, logging.INFO)  # Default to INFO if invalid
    root_logger.setLevel(configured_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Third-party libraries with their own loggers follow LOG_LEVEL as well
    for logger_name in ["playwright", "httpx", "httpcore", "uvicorn"]:
        logging.getLogger(logger_name).setLevel(configured_level)

    root_logger.info(f"Logging initialized with level: {log_level}")
    root_logger.info(f"Log file: {log_file}")

    for handler in root_logger.handlers:
        handler.flush()

    return log_file  # Return log file path for testing


GUNICORN_CONFIG = "python:pdf_service.gunicorn_conf"


def start_server_single_worker(host: str, port: int) -> None:
    uvicorn.run(app=pdf_service_controller.app, host=host, port=port)


def start_server_multi_worker(host: str, port: int, workers: int) -> None:
    """
    Run the service under gunicorn with UvicornWorker processes.

    Every worker runs its own event loop, ChromiumManager and ChromiumLocator;
    the packaged gunicorn config reads HOST, PORT and WORKERS from the environment.
    """
    os.environ["HOST"] = host
    os.environ["PORT"] = str(port)
    os.environ["WORKERS"] = str(workers)
    cmd = ["gunicorn", "pdf_service.pdf_service_controller:app", "--config", GUNICORN_CONFIG]
    logging.info("Starting gunicorn with %d workers: %s", workers, " ".join(cmd))
    result = subprocess.run(cmd, check=False)  # noqa: S603
    sys.exit(result.returncode)


def main() -> None:
    """
    Main entry point for the PDF service.

    Parses command line arguments, initializes logging, and starts the server.
    HOST, PORT and WORKERS environment variables take precedence over the command line.
    """
    parser = argparse.ArgumentParser(description="Chromium PDF service")
    parser.add_argument("--host", default=DEFAULT_HOST, type=str, required=False, help="Interface to bind")
    parser.add_argument("--port", default=DEFAULT_PORT, type=int, required=False, help="Service port")
    parser.add_argument("--workers", default=1, type=int, required=False, help="Number of worker processes (>1 runs gunicorn)")
    args = parser.parse_args()

    host = os.environ.get("HOST", args.host)
    port = int(os.environ.get("PORT", args.port))
    workers = int(os.environ.get("WORKERS", args.workers))

    setup_logging()
    logging.info("PDF service listening on %s:%d", host, port)

    if workers > 1:
        start_server_multi_worker(host, port, workers)
    else:
        start_server_single_worker(host, port)


if __name__ == "__main__":
    main()
