from __future__ import annotations

import argparse
import asyncio
import sys

from logosophe.persistence.db import SessionLocal
from logosophe.services.auth.sessions import issue_session


def _build_parser() -> argparse.ArgumentParser:
    # Sign-in happens upstream; this issues a bearer session for operators and local testing.
    parser = argparse.ArgumentParser(description="Issue a bearer session for a user")
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--provider", default="cli", help="Identity provider label for audit logs")
    parser.add_argument("--ttl-hours", type=int, default=None, help="Override session lifetime")
    return parser


async def _create_session(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        row, raw_token = await issue_session(
            session, email=args.email, provider=args.provider, ttl_hours=args.ttl_hours
        )
        await session.commit()
    print(f"session_id={row.id}")
    print(f"email={row.email}")
    print(f"expires_at={row.expires_at.isoformat()}")
    # The raw token is only shown once; only its hash is stored.
    print(f"token={raw_token}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create_session(args))
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"create_session failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
