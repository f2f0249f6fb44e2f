#!/usr/bin/env python3
"""
Run one reminder/expiry sweep over the live loan groups and exit.

Intended for a daily cron entry, e.g. 08:00.

Usage:
    python -m scripts.run_sweep
"""

from __future__ import annotations

import asyncio
import json
import sys

from loanflow.core.logging import configure_logging
from loanflow.db.session import AsyncSessionLocal, dispose_engine
from loanflow.services.reminders import run_sweep
from loanflow.services.workflow_context import build_workflow_context


async def main() -> int:
    configure_logging()
    ctx = build_workflow_context(actor="cron")
    async with AsyncSessionLocal() as session:
        result = await run_sweep(session, ctx)
    await dispose_engine()
    print(json.dumps(result.as_dict(), indent=2))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
