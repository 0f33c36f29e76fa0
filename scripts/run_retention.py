from __future__ import annotations

import asyncio
import json
import sys

from logosophe.core.logging import configure_logging
from logosophe.services.retention import run_scheduled_retention


async def _run() -> int:
    # Invoked by cron (see log_archive_cron_schedule); one archive and hard-delete pass.
    summary = await run_scheduled_retention()
    print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    errors = summary["archive"]["errors"] + summary["hard_delete"]["errors"]
    return 1 if errors else 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"run_retention failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
