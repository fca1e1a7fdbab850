"""
Dev bootstrap script — create a billing profile and API key for local development.

Usage:
    python -m scripts.bootstrap_dev [--tier standard|legacy]
                                    [--status trial|active]
                                    [--balance 5.00] [--label laptop]

This will:
  1. Create a profile with the given tier, status and wallet balance
  2. Generate an API key for it
  3. Print the raw key ONCE (it is never stored)

The raw key is shown exactly once — copy it immediately.
"""

import argparse
import asyncio
from decimal import Decimal

from qbank_billing.auth.hashing import display_prefix, generate_api_key
from qbank_billing.core.database import async_session_factory, engine
from qbank_billing.models.api_key import APIKey
from qbank_billing.models.profile import Profile


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--tier", choices=["standard", "legacy"], default="standard")
    parser.add_argument("--status", choices=["trial", "active"], default="trial")
    parser.add_argument("--balance", type=Decimal, default=Decimal("0"))
    parser.add_argument("--label", default="dev")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    async with async_session_factory() as session:
        # ── Create profile ──────────────────────────────────
        profile = Profile(
            subscription_tier=args.tier,
            subscription_status=args.status,
            credit_balance=args.balance,
        )
        session.add(profile)
        await session.flush()  # get profile.id

        # ── Generate API key ────────────────────────────────
        raw_key, key_hash = generate_api_key()

        api_key = APIKey(
            user_id=profile.id,
            key_hash=key_hash,
            label=args.label,
            prefix=display_prefix(raw_key),
        )
        session.add(api_key)
        await session.commit()

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  User ID:    {profile.id}")
    print(f"  Tier:       {profile.subscription_tier} ({profile.subscription_status})")
    print(f"  Balance:    ${profile.credit_balance}")
    print()
    print(f"  API Key:    {raw_key}")
    print()
    print("  ⚠  Copy this key now — it will NEVER be shown again.")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
