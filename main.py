"""Main entry point for the Copperx transfer bot: long polling or webhook API."""

import argparse
import asyncio
import sys
from typing import Set

from app.utils.config import settings
from app.utils.logger import get_logger

logger = get_logger("main")


async def poll_updates():
    """Long-poll Telegram and handle each update in its own task."""
    from app.agents.message_processor import create_message_processor

    processor = create_message_processor()
    telegram = processor.transport

    webhook = await telegram.get_webhook_info()
    if webhook.get("url"):
        logger.info(f"Webhook set to {webhook['url']}; removing it for long polling")
        await telegram.delete_webhook()

    sweeper = asyncio.create_task(processor.transfers.states.run_sweeper())
    in_flight: Set[asyncio.Task] = set()
    offset = None
    logger.info("Polling Telegram for updates")
    try:
        while True:
            updates, offset = await telegram.get_updates(offset)
            for update in updates:
                task = asyncio.create_task(processor.process_update(update))
                in_flight.add(task)
                task.add_done_callback(_finish_update)
                task.add_done_callback(in_flight.discard)
            if not updates:
                await asyncio.sleep(0.5)
    finally:
        sweeper.cancel()
        for task in in_flight:
            task.cancel()
        processor.close()


def _finish_update(task: asyncio.Task):
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.opt(exception=error).error(f"Error handling Telegram update: {error}")


def run_polling():
    """Run the bot with Telegram long polling."""
    if not settings.telegram_enabled:
        print("❌ TELEGRAM_BOT_TOKEN is not configured")
        sys.exit(1)
    print(f"🤖 Starting {settings.app_name} (long polling)")
    asyncio.run(poll_updates())


def run_api():
    """Run the webhook API server."""
    try:
        import uvicorn

        logger.info(f"Starting {settings.app_name} API server")
        print(f"🚀 Starting {settings.app_name} API Server")
        print(f"📍 Running on: http://{settings.api_host}:{settings.api_port}")
        print(f"🔄 Debug mode: {settings.debug}")
        print()

        uvicorn.run(
            "api_server:app",  # Use import string for proper reload support
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.api_reload,
            log_level=settings.log_level.lower()
        )
    except ImportError as e:
        logger.error(f"Failed to import API modules: {e}")
        print("Error: Failed to start API server. Make sure all dependencies are installed.")
        sys.exit(1)


def check_environment() -> bool:
    """Check if environment is properly configured."""
    from app.utils.service_validator import log_service_status

    results = log_service_status()
    for name in ("copperx", "telegram", "mongodb"):
        result = results[name]
        print(f"{'✅' if result['valid'] else '⚠️ '} {name.capitalize()}")
        for message in result["issues"] + result["warnings"]:
            print(f"   - {message}")
    print()
    return results["overall_valid"]


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description=f"{settings.app_name} - Telegram bot for Copperx transfers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py              # Long polling (default when TELEGRAM_USE_POLLING=true)
  python main.py --polling    # Long polling explicitly
  python main.py --api        # Webhook API server
  python main.py --check      # Check environment configuration
        """
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument("--polling", action="store_true", help="Receive updates with long polling")
    group.add_argument("--api", action="store_true", help="Run the FastAPI webhook server")
    group.add_argument("--check", action="store_true", help="Check environment configuration")
    parser.add_argument(
        "--version",
        action="version",
        version=f"{settings.app_name} v{settings.app_version}"
    )

    args = parser.parse_args()

    print("=" * 60)
    print(f"  {settings.app_name} v{settings.app_version}")
    print("=" * 60)
    print()

    if args.check:
        ok = check_environment()
        print("✅ Environment configuration check passed!" if ok else "❌ Environment configuration has issues")
        sys.exit(0 if ok else 1)
    elif args.api:
        run_api()
    elif args.polling or settings.telegram_use_polling:
        run_polling()
    else:
        run_api()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n👋 Application terminated by user")
        sys.exit(0)
