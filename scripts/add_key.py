"""Register a pooled API key. Run with: python -m scripts.add_key gemini primary-1 --limit 1500

The secret is read from the KEYPOOL_SECRET environment variable, or prompted
for, so it never lands in shell history.
"""
import argparse
import asyncio
import getpass
import os

from keypool.credentials.service import mask_secret, register_credential
from keypool.db.session import async_session_factory


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("service_name")
    parser.add_argument("key_name")
    parser.add_argument("--limit", type=int, default=None, help="usage limit per quota period")
    parser.add_argument("--priority", type=int, default=0, help="lower is preferred")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    secret = os.environ.get("KEYPOOL_SECRET") or getpass.getpass("API key: ")

    async with async_session_factory() as db:
        async with db.begin():
            cred = await register_credential(
                db,
                service_name=args.service_name,
                key_name=args.key_name,
                plaintext_secret=secret,
                usage_limit=args.limit,
                priority=args.priority,
            )
    print(f"  Added: {args.service_name}/{args.key_name} ({mask_secret(secret)}) id={cred.id}")


if __name__ == "__main__":
    asyncio.run(main())
