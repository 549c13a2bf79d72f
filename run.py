#!/usr/bin/env python3
"""
Horizon Banking Entry Point

    python run.py serve                 # API on port 8090
    python run.py worker [--once]       # outbox, statements and recurring rules
    python run.py create-admin --name ... --email ... --password ...
"""

import argparse
import asyncio
import sys

from horizon_banking.api import run_server
from horizon_banking.api.deps import BankingSystem
from horizon_banking.config import get_config
from horizon_banking.errors import BankingError
from horizon_banking.logging_config import get_logger, log_action, setup_logging


logger = get_logger("horizon.worker")


async def run_worker_pass(system: BankingSystem) -> dict:
    """One pass: deliver mail, send statements, then run due recurring rules"""
    config = system.config
    results = {
        "outbox": await system.dispatcher.dispatch_pending(limit=config.outbox_batch_size),
        "statements": await system.statements.process_pending(),
        "recurring": system.recurring.run_due()
    }
    log_action(logger, "info", "Worker pass complete", action="worker_pass", extra=results)
    return results


async def run_worker(system: BankingSystem, once: bool = False) -> None:
    interval = system.config.worker_interval_seconds
    while True:
        await run_worker_pass(system)
        if once:
            return
        await asyncio.sleep(interval)


def main(argv=None) -> int:
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)

    parser = argparse.ArgumentParser(description="Horizon banking dashboard")
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=config.api_host)
    serve.add_argument("--port", type=int, default=config.api_port)
    serve.add_argument("--debug", action="store_true")

    worker = subcommands.add_parser("worker", help="Process outbox, statements and recurring rules")
    worker.add_argument("--once", action="store_true", help="Run a single pass and exit")

    create_admin = subcommands.add_parser("create-admin", help="Seed the first admin account")
    create_admin.add_argument("--name", required=True)
    create_admin.add_argument("--email", required=True)
    create_admin.add_argument("--password", required=True)

    args = parser.parse_args(argv)

    if args.command == "serve":
        print(f"🏦 Starting Horizon Banking API at http://{args.host}:{args.port}")
        print(f"📚 Documentation at: http://{args.host}:{args.port}/docs")
        try:
            run_server(host=args.host, port=args.port, debug=args.debug)
        except KeyboardInterrupt:
            print("\n👋 Shutting down Horizon Banking...")
        return 0

    system = BankingSystem(config)
    try:
        if args.command == "worker":
            try:
                asyncio.run(run_worker(system, once=args.once))
            except KeyboardInterrupt:
                pass
            return 0

        try:
            admin = system.user_manager.register_first_admin(args.name, args.email, args.password)
        except BankingError as e:
            print(f"❌ {e.message}")
            return 1
        print(f"✅ Admin created: {admin.email}")
        return 0
    finally:
        system.close()


if __name__ == "__main__":
    sys.exit(main())
