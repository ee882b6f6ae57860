"""Entry point for the mail engine.

Usage::

    python -m docmail import <account-id>            # one import run
    python -m docmail test-connection <account-id>   # connectivity check
"""

from __future__ import annotations

import asyncio
import sys

USAGE = "Usage: python -m docmail <import|test-connection> <account-id>"


async def _run(mode: str, account_id: int) -> int:
    from .config import MailEngineConfig
    from .exceptions import ConnectionFailure
    from .logging import setup_logging
    from .service import MailEngine

    config = MailEngineConfig()
    setup_logging(json=config.log_json, level=config.log_level)

    async with MailEngine(config) as engine:
        try:
            if mode == "import":
                error = await engine.import_account(account_id)
                print(f"Import finished with error: {error}" if error else "Import finished")
            else:
                await engine.test_account(account_id)
                print("Connection OK")
        except ConnectionFailure as exc:
            print(f"Connection failed: {exc}", file=sys.stderr)
            return 1
    return 0


def main() -> None:
    if len(sys.argv) < 3 or sys.argv[1] not in ("import", "test-connection"):
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    try:
        account_id = int(sys.argv[2])
    except ValueError:
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run(sys.argv[1], account_id)))


if __name__ == "__main__":
    main()
