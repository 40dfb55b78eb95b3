#!/usr/bin/env python3
"""
CAMLY Rewards Runner
====================

Run the API or the settlement workers.

Usage:
    python run_app.py                    # API, development mode (default)
    python run_app.py --mode prod        # API, production mode
    python run_app.py --mode worker      # Celery worker for the settlement queue
    python run_app.py --mode beat        # Celery beat (claim reconciliation schedule)
    python run_app.py --port 8001        # Custom port
"""

import argparse
import os
import subprocess
import sys


def check_environment():
    """Warn about missing local configuration"""
    if os.path.exists(".env"):
        print(".env file found")
    else:
        print(".env file not found, using defaults")
    return True


def run_api(host="0.0.0.0", port=8000, reload=True):
    """Run the FastAPI application"""
    print(f"Starting CAMLY rewards API on {host}:{port}")
    print(f"API Docs: http://{host}:{port}/api/docs")

    import uvicorn
    uvicorn.run(
        "camly.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


def run_celery(role):
    """Run a Celery worker or the beat scheduler"""
    command = [sys.executable, "-m", "celery", "-A", "camly.core.celery_app", role, "--loglevel=info"]
    if role == "worker":
        command += ["-Q", "settlement,default"]
    print(f"Starting Celery {role}: {' '.join(command)}")
    return subprocess.call(command)


def main():
    parser = argparse.ArgumentParser(
        description="CAMLY Rewards Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--mode",
        choices=["dev", "prod", "worker", "beat"],
        default="dev",
        help="What to run (default: dev)"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")

    args = parser.parse_args()

    if not check_environment():
        return 1

    if args.mode in ("worker", "beat"):
        return run_celery(args.mode)

    run_api(args.host, args.port, reload=args.mode == "dev")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nStopped")
        sys.exit(0)
