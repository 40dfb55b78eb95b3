# CAMLY Rewards Monitoring Configuration
# Prometheus metrics and logging setup

import logging
import logging.handlers
import os
import time

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram

from .config import settings

# HTTP metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])

# Ledger metrics
ledger_credits = Counter('camly_ledger_credits_total', 'CAMLY credited to pending balances', ['reward_type'])
claim_attempts = Counter('camly_claim_attempts_total', 'Claim attempts by kind and outcome', ['kind', 'status'])
donations_total = Counter('camly_donations_total', 'Donations recorded', ['kind'])
settlement_failures = Counter('camly_settlement_failures_total', 'Confirmed transfers whose ledger update failed')


def setup_logging():
    """Configure logging for the application"""

    log_level = os.getenv("LOG_LEVEL", settings.LOG_LEVEL)
    log_file = os.getenv("LOG_FILE", settings.LOG_FILE or "")

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=int(os.getenv("LOG_BACKUP_COUNT", "5"))
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=handlers
    )

    # Silence noisy loggers in production
    if settings.ENVIRONMENT == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def setup_monitoring_middleware(app: FastAPI):
    """Add monitoring middleware to track metrics"""

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        request_count.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(process_time)

        response.headers["X-Process-Time"] = str(process_time)
        return response
