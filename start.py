import os
import argparse
import subprocess
import sys
import logging
from pathlib import Path
from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("squares")

# Load environment variables
load_dotenv()

DEFAULT_ENV = {
    "SECRET_KEY": "supersecretkey",
    "OTP_LENGTH": "6",
    "OTP_EXPIRY_MINUTES": "10",
    "OTP_MAX_ATTEMPTS": "5",
    "OTP_RESEND_COOLDOWN_MINUTES": "2",
    "OTP_STORE_BACKEND": "memory",
}

def setup_environment():
    """Create a minimal .env file if none exists"""
    env_path = Path(".env")

    if env_path.exists():
        logger.info(".env file already exists")
        return

    example_path = Path(".env.example")
    if example_path.exists():
        logger.info("Creating .env file from .env.example...")
        with open(example_path, "r") as example, open(env_path, "w") as env:
            env.write(example.read())
        logger.info("Created .env file. Please update it with your actual values.")
    else:
        logger.info("Creating basic .env file...")
        with open(env_path, "w") as env:
            for name, value in DEFAULT_ENV.items():
                env.write(f"{name}={value}\n")
        logger.info("Created basic .env file. Please update it with your actual values.")

def check_store():
    """Make sure the configured OTP store is reachable"""
    backend = os.environ.get("OTP_STORE_BACKEND", "memory").lower()
    if backend != "redis":
        logger.info("Using in-memory OTP store, nothing to check")
        return True

    import redis
    from app.core.config import settings

    try:
        redis.Redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT, db=settings.REDIS_DB).ping()
        logger.info("Redis is reachable")
        return True
    except redis.RedisError as e:
        logger.error(f"Cannot reach Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}")
        return False

def start_server(port=8000, reload=True):
    """Start the FastAPI server using uvicorn"""
    port = int(os.environ.get("PORT", port))
    logger.info(f"Starting server on port {port}...")

    args = ["uvicorn", "main:app", "--host", "0.0.0.0", "--port", str(port)]

    if reload:
        args.append("--reload")

    try:
        subprocess.run(args)
    except KeyboardInterrupt:
        logger.info("\nServer stopped")
        sys.exit(0)

def main():
    """Parse command-line arguments and run the application"""
    parser = argparse.ArgumentParser(description="Squares OTP Service Starter")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload on code changes")
    parser.add_argument("--skip-check", action="store_true", help="Skip checking the OTP store")
    parser.add_argument("--setup-only", action="store_true", help="Only set up the environment")

    args = parser.parse_args()

    logger.info("Squares OTP Service Starter")
    logger.info("---------------------------")

    setup_environment()

    if not args.skip_check and not check_store():
        sys.exit(1)

    if args.setup_only:
        logger.info("Setup complete. Exiting.")
        return

    start_server(port=args.port, reload=not args.no_reload)

if __name__ == "__main__":
    main()
