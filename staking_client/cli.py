"""
Command-line staking client.

Usage:
    staking-client addresses
    staking-client status
    staking-client register [--referrer PUBKEY]
    staking-client stake AMOUNT [--referrer PUBKEY]
    staking-client unstake AMOUNT
    staking-client claim
    staking-client compound

Signs with STAKER_PRIVATE_KEY (base58 or JSON byte array) from .env or the environment.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from staking_client.config.env import mask_rpc_url
from staking_client.config.settings import StakingClientConfig, get_settings
from staking_client.core.exceptions import StakingError
from staking_client.staking.service import StakeResult, StakingService
from staking_client.staking.status import TrackedTransaction
from staking_client.staking_logging import get_logger
from staking_client.utils.wallet_utils import explorer_tx_url, to_pubkey
from staking_client.wallet.signer import KeypairSigner

logger = get_logger(__name__)

PRIVATE_KEY_ENV = "STAKER_PRIVATE_KEY"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="staking-client", description="Referral staking client.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("addresses", help="Print derived program addresses for the signer.")
    sub.add_parser("status", help="Print balances, staked amount and registration.")
    p = sub.add_parser("register", help="Register the signer (idempotent).")
    p.add_argument("--referrer", default=None, help="Referrer wallet pubkey.")
    p = sub.add_parser("stake", help="Stake AMOUNT tokens.")
    p.add_argument("amount")
    p.add_argument("--referrer", default=None, help="Referrer used if registration is needed.")
    p = sub.add_parser("unstake", help="Unstake AMOUNT tokens.")
    p.add_argument("amount")
    sub.add_parser("claim", help="Claim pending rewards.")
    sub.add_parser("compound", help="Compound pending rewards into the stake.")
    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _print_transition(tracked: TrackedTransaction) -> None:
    line = f"[{tracked.kind.value}] {tracked.status.value}"
    if tracked.signature:
        line += f" {tracked.signature}"
    if tracked.reason:
        line += f" ({tracked.reason.value})"
    print(line, file=sys.stderr)


async def run(args: argparse.Namespace, config: StakingClientConfig, signer: KeypairSigner) -> int:
    async with StakingService.from_config(config, signer) as service:
        service.tracker.subscribe(_print_transition)
        referrer = to_pubkey(args.referrer) if getattr(args, "referrer", None) else None

        if args.command == "addresses":
            addresses = await service.addresses()
            _print_json({k: str(v) for k, v in vars(addresses).items()})
            return 0
        if args.command == "status":
            snapshot = await service.refresh_balances(force=True)
            _print_json(snapshot.to_dict())
            return 0
        if args.command == "register":
            state = await service.register(referrer)
            _print_json({"owner": str(service.owner), "registration": state.value})
            return 0

        result: StakeResult
        if args.command == "stake":
            result = await service.stake(args.amount, referrer)
        elif args.command == "unstake":
            result = await service.unstake(args.amount)
        elif args.command == "claim":
            result = await service.claim_rewards()
        else:
            result = await service.compound_rewards()
        payload = result.to_dict()
        payload["explorer"] = explorer_tx_url(result.signature, config.network)
        _print_json(payload)
        return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = get_settings()
    except StakingError as e:
        logger.error("config_invalid", error=str(e))
        return 1

    secret = (os.getenv(PRIVATE_KEY_ENV) or "").strip()
    if not secret:
        logger.error("signer_missing", message=f"{PRIVATE_KEY_ENV} is required. Set it in .env or the environment.")
        return 1

    try:
        signer = KeypairSigner.from_secret(secret)
        logger.info(
            "cli_start",
            command=args.command,
            owner=str(signer.address),
            network=config.network,
            rpc=mask_rpc_url(config.rpc_url),
        )
        return asyncio.run(run(args, config, signer))
    except StakingError as e:
        logger.error("cli_failed", command=args.command, **e.to_dict())
        print(f"Error: {e.message}", file=sys.stderr)
        return 2 if e.retryable else 1
    except ValueError as e:
        logger.error("cli_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
