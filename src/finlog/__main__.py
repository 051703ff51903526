"""Entry point for ``python -m finlog``."""

import asyncio

from finlog.bot import run_bot


def main() -> None:
    """Launch the finlog Telegram bot."""
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
