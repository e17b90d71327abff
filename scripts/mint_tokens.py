#!/usr/bin/env python3
"""Mint or inspect bearer tokens with the configured signing key.

Usage:
    # Mint an access/renewal pair and register the renewal token in the store:
    JWT_SECRET=... python scripts/mint_tokens.py --email ops@example.com --user-id 1 --role ADMIN

    # Verify a token and print its claims or the reason it was rejected:
    JWT_SECRET=... python scripts/mint_tokens.py --inspect eyJhbGciOi...

Environment Variables:
    JWT_SECRET: Signing key shared with the running service (required)
    REDIS_URL: Token store; pass --memory to skip Redis for a throwaway pair
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def mint(email: str, user_id: int, role: str) -> dict:
    """Issue a token pair for the given principal through the lifecycle manager."""
    # Import here to avoid loading config before env vars are set
    from tokengate.service.runtime import get_runtime
    from tokengate.service.tokens import Principal, renewal_key

    runtime = get_runtime()
    try:
        outcome = await runtime.tokens.issue(Principal(user_id=user_id, email=email, role=role))
        if not outcome.ok:
            raise RuntimeError(f"token issue failed: {outcome.failure.value}")
        result = asdict(outcome.value)
        result["renewal_ttl_seconds"] = await runtime.cache.ttl(renewal_key(email))
    finally:
        await runtime.cache.close()
    return result


def inspect(token: str) -> dict:
    from tokengate.config import get_settings
    from tokengate.service.codec import ClaimSet, TokenCodec

    codec = TokenCodec(get_settings().jwt_secret)
    result = codec.verify(token)
    if isinstance(result, ClaimSet):
        return {
            "valid": True,
            "claims": result.to_payload(),
            "remaining_seconds": round(codec.remaining_seconds(result), 3),
        }
    return {"valid": False, "reason": result.value}


def main():
    parser = argparse.ArgumentParser(
        description="Mint or inspect tokengate bearer tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", help="Subject of the minted tokens")
    parser.add_argument("--user-id", type=int, help="User id embedded in the access token")
    parser.add_argument("--role", default="USER", choices=["USER", "ADMIN"])
    parser.add_argument("--inspect", metavar="TOKEN", help="Verify TOKEN instead of minting")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Register the renewal token in a throwaway in-memory store",
    )

    args = parser.parse_args()

    if not os.environ.get("JWT_SECRET"):
        print("Error: JWT_SECRET environment variable required")
        sys.exit(1)

    if args.inspect:
        print(json.dumps(inspect(args.inspect), indent=2))
        return

    if not args.email or args.user_id is None:
        print("Error: --email and --user-id are required when minting")
        sys.exit(1)

    if args.memory:
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store; the renewal token will not be reissuable")

    try:
        result = asyncio.run(mint(args.email, args.user_id, args.role))
    except RuntimeError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
