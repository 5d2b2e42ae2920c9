#!/usr/bin/env python3
"""
hh-relay - Main Entry Point

Usage:
    # Run the operator API (starts the browser)
    python main.py serve

    # Run the Resource Registry
    python main.py registry --port 8091

    # Extract a batch of resumes
    python main.py extract --count 20 --strategy per-link

    # Send one message
    python main.py send 123456 "Hello" --mode background-tab
"""

import sys
import asyncio
import argparse
import logging

from api.config import config, VALID_STRATEGIES
from api.logging_config import setup_logging

logger = logging.getLogger("hh_relay")


def run_server(host: str, port: int, reload: bool = False):
    """Run the operator API."""
    import uvicorn

    print(f"🚀 Starting operator API on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


def run_registry(host: str, port: int, reload: bool = False):
    """Run the Resource Registry."""
    import uvicorn

    print(f"🗄️  Starting resource registry on {host}:{port}")
    uvicorn.run(
        "api.registry_app:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_extract(count: int, strategy: str) -> int:
    """Run one extraction batch against the configured registry."""
    from browser import PlaywrightTabSurface
    from api.registry_client import RegistryClient
    from core.batch_extractor import ResumeBatchExtractor, ExtractorConfig

    async with PlaywrightTabSurface(
        headless=config.BROWSER_HEADLESS,
        user_data_dir=config.BROWSER_USER_DATA_DIR,
    ) as surface, RegistryClient(config.REGISTRY_URL, config.REGISTRY_TIMEOUT_SECONDS) as registry:
        extractor = ResumeBatchExtractor(surface, registry, ExtractorConfig.from_app_config(config))
        outcome = await extractor.run_batch(count, strategy=strategy)

    logger.info(
        f"✅ Extraction finished: {outcome.succeeded_count}/{outcome.processed_count} succeeded "
        f"(requested {outcome.requested_count})"
    )
    for sample in outcome.error_samples:
        logger.warning(f"  ❌ {sample['url']}: {sample['error']}")
    return 0 if outcome.failed_count == 0 else 1


async def run_send(chat_id: str, text: str, mode: str) -> int:
    """Send one message and wait for the worker to deliver it."""
    from browser import PlaywrightTabSurface
    from core.send_orchestrator import MessageSendOrchestrator, SendOrchestratorConfig

    send_config = SendOrchestratorConfig.from_app_config(config)
    async with PlaywrightTabSurface(
        headless=config.BROWSER_HEADLESS,
        user_data_dir=config.BROWSER_USER_DATA_DIR,
    ) as surface:
        orchestrator = MessageSendOrchestrator(surface, send_config)
        ack = orchestrator.enqueue_send(chat_id, text, mode)
        logger.info(f"Accepted as {ack['taskId']}")
        await orchestrator.join()

        # Delivery happens when the worker announces readiness on the chat page.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + send_config.worker_timeout_seconds
        while orchestrator.pending_deliveries and loop.time() < deadline:
            await asyncio.sleep(0.5)
        await orchestrator.stop()

    stats = orchestrator.get_stats()
    if stats["delivered"]:
        logger.info("✅ Message delivered")
        return 0
    logger.error(f"❌ Message not delivered: {stats}")
    return 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="hh-relay - chat message relay and resume extraction for hh.ru"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Operator API
    serve_parser = subparsers.add_parser('serve', help='Run the operator API')
    serve_parser.add_argument('--host', default=config.HOST, help='Host to bind to')
    serve_parser.add_argument('--port', type=int, default=config.PORT, help='Port to bind to')
    serve_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Registry
    registry_parser = subparsers.add_parser('registry', help='Run the resource registry')
    registry_parser.add_argument('--host', default=config.REGISTRY_HOST, help='Host to bind to')
    registry_parser.add_argument('--port', type=int, default=config.REGISTRY_PORT, help='Port to bind to')
    registry_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Extraction
    extract_parser = subparsers.add_parser('extract', help='Extract a batch of resumes')
    extract_parser.add_argument('--count', type=int, default=config.EXTRACT_DEFAULT_COUNT, help='Links to process')
    extract_parser.add_argument('--strategy', choices=VALID_STRATEGIES, default=config.EXTRACT_STRATEGY,
                                help='Tab strategy')

    # Send
    send_parser = subparsers.add_parser('send', help='Send one chat message')
    send_parser.add_argument('chat_id', help='Chat id')
    send_parser.add_argument('text', help='Message text')
    send_parser.add_argument('--mode', choices=['current-tab', 'background-tab'], default='current-tab',
                             help='Tab to send from')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'serve':
        run_server(args.host, args.port, args.reload)

    elif args.command == 'registry':
        run_registry(args.host, args.port, args.reload)

    elif args.command == 'extract':
        setup_logging(log_dir=config.LOG_DIR)
        if args.count <= 0:
            parser.error("--count must be positive")
        sys.exit(asyncio.run(run_extract(args.count, args.strategy)))

    elif args.command == 'send':
        setup_logging(log_dir=config.LOG_DIR)
        sys.exit(asyncio.run(run_send(args.chat_id, args.text, args.mode)))


if __name__ == "__main__":
    main()
