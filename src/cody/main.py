"""Cody entry point."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import Settings


def _build(settings: Settings):
    from .service import build_service

    return build_service(settings)


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Run the webhook server."""
    import uvicorn

    from .server import create_app

    service = _build(settings)
    app = create_app(service, webhook_path=settings.webhook_path)

    print(f"Server running on port {args.port or settings.port}")
    print("Webhook setup command:")
    print(f"  cody set-webhook <YOUR_DEPLOYED_URL>{settings.webhook_path}")
    uvicorn.run(app, host=args.host, port=args.port or settings.port)
    return 0


async def _checkin(settings: Settings, window: float) -> int:
    service = _build(settings)
    await service.transport.start()
    try:
        tasks = await service.notifier.run_cycle(window)
        results = await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        await service.transport.stop()
        await service.store.close()
    sent = sum(r for r in results if isinstance(r, int))
    print(f"Sent {sent} check-in(s) in {len(tasks)} batch(es)")
    return 0


def cmd_checkin(args: argparse.Namespace, settings: Settings) -> int:
    """Run one check-in cycle and wait for it to finish."""
    window = args.window if args.window is not None else settings.checkin_window_seconds
    return asyncio.run(_checkin(settings, window))


async def _import_users(settings: Settings, path: Path) -> int:
    from .memory import UserRegistry
    from .store import SQLiteStore

    store = SQLiteStore(settings.db_path)
    store.init_db()
    try:
        registry = UserRegistry(store, capacity=settings.batch_capacity)
        with open(path, "r", encoding="utf-8") as f:
            added = await registry.import_batches(json.load(f))
    finally:
        await store.close()
    print(f"Imported {added} new user(s)")
    return 0


def cmd_import_users(args: argparse.Namespace, settings: Settings) -> int:
    """Register users from a users.json file."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: {path} not found", file=sys.stderr)
        return 1
    return asyncio.run(_import_users(settings, path))


async def _set_webhook(settings: Settings, url: str) -> bool:
    from .telegram import TelegramTransport

    transport = TelegramTransport(settings.telegram_token)
    await transport.start()
    try:
        return await transport.set_webhook(url)
    finally:
        await transport.stop()


def cmd_set_webhook(args: argparse.Namespace, settings: Settings) -> int:
    """Register the webhook URL with Telegram."""
    ok = asyncio.run(_set_webhook(settings, args.url))
    print("Webhook set" if ok else "Telegram rejected the webhook")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cody",
        description="Quota-gated Telegram assistant with conversational memory",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    checkin = subparsers.add_parser("checkin", help="Send one round of check-ins")
    checkin.add_argument(
        "--window", type=float, default=None, help="Seconds to spread batches over"
    )
    checkin.set_defaults(func=cmd_checkin)

    import_users = subparsers.add_parser(
        "import-users", help="Register users from a users.json file"
    )
    import_users.add_argument("file")
    import_users.set_defaults(func=cmd_import_users)

    set_webhook = subparsers.add_parser("set-webhook", help="Set the Telegram webhook")
    set_webhook.add_argument("url")
    set_webhook.set_defaults(func=cmd_set_webhook)

    return parser


def run(argv: list[str] | None = None) -> int:
    """Parse arguments and run a subcommand."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
    )
    settings = Settings.from_env()
    try:
        return args.func(args, settings)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Main entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
