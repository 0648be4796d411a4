#!/usr/bin/env python3
"""
Launch Orchestrator - Command Line Interface

Operator commands against the same Redis ledger the API uses:
- List: A principal's launches
- Status: One launch, re-polling the mixer while the deposit is pending
- Withdraw: Push a mixed deposit to its launch wallet
- Wallet: The platform wallet a principal funds launches from
- Balance: Token balance of any wallet
- Generate-secret: A fresh KEY_ENCRYPTION_SECRET

Usage:
    python cli.py list --owner <owner>
    python cli.py status <launch_id> --owner <owner>
    python cli.py withdraw <launch_id> --owner <owner>
    python cli.py wallet --owner <owner>
    python cli.py balance <wallet> <mint>
    python cli.py generate-secret
"""

import asyncio
import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()


class Colors:
    """ANSI color codes for terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


STATUS_COLORS = {
    "deposit_pending": Colors.YELLOW,
    "withdrawing": Colors.YELLOW,
    "withdrawn": Colors.BLUE,
    "launched": Colors.GREEN,
    "sold": Colors.GREEN,
    "claimed_and_returned": Colors.GREEN,
}


def color(text: str, c: str) -> str:
    """Apply color to text."""
    return f"{c}{text}{Colors.ENDC}"


def status_label(status: str) -> str:
    if status.endswith("_error"):
        return color(status, Colors.RED)
    return color(status, STATUS_COLORS.get(status, Colors.CYAN))


def header(title: str) -> None:
    print(color("\n===========================================", Colors.CYAN))
    print(color(f"  {title}", Colors.BOLD))
    print(color("===========================================\n", Colors.CYAN))


async def with_service(action):
    """Run ``action(orchestrator)`` with a started service, reporting launch errors."""
    from api.launch_service import LaunchService
    from execution.errors import LaunchError

    service = LaunchService()
    await service.start()
    try:
        return await action(service.orchestrator)
    except LaunchError as e:
        print(color(f"  ✗ {e.code}: {e.message}", Colors.RED))
        details = {k: v for k, v in e.to_dict().items() if k not in ("error", "message")}
        if details:
            print(f"    {json.dumps(details, default=str)}")
        sys.exit(1)
    finally:
        await service.stop()


async def cmd_list(args):
    """List a principal's launches."""
    header("LAUNCHES")

    launches = await with_service(lambda orch: orch.list_launches(args.owner))
    if not launches:
        print("  No launches.")
        return

    print("  ID                                    Status                 Ticker")
    print("  " + "-" * 70)
    for launch in launches:
        ticker = (launch.get("metadata") or {}).get("ticker") or "-"
        print(f"  {launch['id']:<38}{status_label(launch['status']):<32}{ticker}")
    print()


async def cmd_status(args):
    """Show one launch."""
    header("LAUNCH STATUS")

    record = await with_service(lambda orch: orch.get_status(args.owner, args.launch_id))

    print(f"  Launch:          {record.id}")
    print(f"  Status:          {status_label(record.overall_status)}")
    print(f"  Requested:       {record.requested_amount / 1e9:.4f} SOL")
    print(f"  Launch Wallet:   {record.launch_address or '-'}")
    print(f"  Deposit Addr:    {record.mixing.deposit_address or '-'}")
    print(f"  Mixing Status:   {record.mixing.status}")
    print(f"  Mint:            {record.trade.mint_address or '-'}")
    if record.trade.tx_signature:
        print(f"  Create Tx:       {record.trade.tx_signature}")
    if record.trade.error:
        print(f"  Last Error:      {color(record.trade.error, Colors.RED)}")
    print()


async def cmd_withdraw(args):
    """Attempt the withdraw to the launch wallet."""
    header("WITHDRAW")

    result = await with_service(lambda orch: orch.withdraw(args.owner, args.launch_id))

    if result.withdrawn:
        print(color("  ✓ Withdrawn to launch wallet", Colors.GREEN))
    elif result.changed:
        print(f"  Mixing not ready, status now {status_label(result.status)}")
    else:
        print(f"  No change ({status_label(result.status)})")
    print()


async def cmd_wallet(args):
    """Show the principal's platform (funding) wallet."""
    header("PLATFORM WALLET")

    wallet = await with_service(lambda orch: orch.platform_wallet(args.owner))

    balance = wallet["balance_lamports"]
    balance_text = f"{balance / 1e9:.4f} SOL" if balance is not None else "-"
    print(f"  Address:         {wallet['platform_wallet']}")
    print(f"  Balance:         {balance_text}")
    print()


async def cmd_balance(args):
    """Token balance of a wallet."""
    header("TOKEN BALANCE")

    balance = await with_service(lambda orch: orch.token_balance(args.wallet, args.mint))

    print(f"  Wallet:          {balance.owner}")
    print(f"  Mint:            {balance.mint}")
    print(f"  Balance:         {color(str(balance.balance_ui), Colors.GREEN)}")
    print(f"  Decimals:        {balance.decimals if balance.decimals is not None else '-'}")
    print(f"  Accounts:        {balance.accounts}")
    print()


async def cmd_generate_secret(args):
    """Print a new encryption secret."""
    from execution.key_manager import generate_encryption_secret

    print(generate_encryption_secret())


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Launch Orchestrator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # List command
    list_parser = subparsers.add_parser("list", help="List a principal's launches")
    list_parser.add_argument("--owner", required=True, help="Owner id")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show launch status")
    status_parser.add_argument("launch_id")
    status_parser.add_argument("--owner", required=True, help="Owner id")

    # Withdraw command
    withdraw_parser = subparsers.add_parser("withdraw", help="Withdraw a mixed deposit to the launch wallet")
    withdraw_parser.add_argument("launch_id")
    withdraw_parser.add_argument("--owner", required=True, help="Owner id")

    # Wallet command
    wallet_parser = subparsers.add_parser("wallet", help="Show the platform wallet to fund")
    wallet_parser.add_argument("--owner", required=True, help="Owner id")

    # Balance command
    balance_parser = subparsers.add_parser("balance", help="Token balance of a wallet")
    balance_parser.add_argument("wallet", help="Owner wallet address")
    balance_parser.add_argument("mint", help="Token mint address")

    # Secret command
    subparsers.add_parser("generate-secret", help="Generate a KEY_ENCRYPTION_SECRET")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    # Route to command handler
    handlers = {
        "list": cmd_list,
        "status": cmd_status,
        "withdraw": cmd_withdraw,
        "wallet": cmd_wallet,
        "balance": cmd_balance,
        "generate-secret": cmd_generate_secret,
    }

    handler = handlers.get(args.command)
    if handler:
        asyncio.run(handler(args))


if __name__ == "__main__":
    main()
