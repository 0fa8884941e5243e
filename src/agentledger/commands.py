"""
AgentLedger CLI commands: on-chain audit trail for AI agents.

Commands:
  agentledger log              - Write one audit record on-chain
  agentledger history          - List audit records for a wallet
  agentledger verify           - Verify a transaction carries a valid record
  agentledger wallet           - Show wallet address, network and balance
  agentledger airdrop          - Request devnet SOL
  agentledger generate-wallet  - Create a new agent wallet
  agentledger init             - Write agentledger.json (and a wallet)
  agentledger version          - Show version info

Every command accepts --json. Exit codes: 0 ok, 1 error,
2 verification failed, 3 bad input.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, NoReturn, Optional, TypeVar

import base58
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from agentledger.config import DEFAULT_CONFIG_FILE, LedgerConfig, load_config, write_config
from agentledger.errors import (
    E_DECODE_MISMATCH,
    E_NOT_FOUND,
    ConfigurationError,
    PayloadTooLarge,
    TransportFailure,
)
from agentledger.history import DEFAULT_LIMIT, QueryOptions
from agentledger.keystore import Keypair, generate_keypair, is_signature, write_keypair
from agentledger.ledger import AgentLedger
from agentledger.memo import MAX_MEMO_BYTES, encode_memo
from agentledger.schema import MEMO_VERSION

T = TypeVar("T")

console = Console()

agentledger_app = typer.Typer(
    name="agentledger",
    help="On-chain audit trail for AI agents (Solana memos)",
    no_args_is_help=True,
)

_state: Dict[str, Any] = {"config_path": None}


def _output_json(data: Dict[str, Any], exit_code: Optional[int] = None) -> None:
    """Print structured JSON to stdout and exit.

    Exit codes:
    - 0: success (status == "ok")
    - 1: error (status == "error")
    - 2: verification failed (status == "failed")
    - 3: bad input (invalid arguments, missing config)

    Can be overridden with explicit exit_code parameter.
    """
    print(json.dumps(data, indent=2, default=str))
    if exit_code is not None:
        raise typer.Exit(exit_code)
    status = data.get("status", "ok")
    if status == "ok":
        raise typer.Exit(0)
    elif status == "failed":
        raise typer.Exit(2)
    else:
        raise typer.Exit(1)


def _fail(command: str, message: str, output_json: bool, exit_code: int = 1, **extra: Any) -> NoReturn:
    """Report an error in the requested format and exit."""
    if output_json:
        _output_json({"command": command, "status": "error", "error": message, **extra}, exit_code=exit_code)
    console.print(f"[red]Error:[/] {escape(message)}")
    raise typer.Exit(exit_code)


def _open_ledger(command: str, output_json: bool, **overrides: Any) -> AgentLedger:
    try:
        return AgentLedger.from_env(_state["config_path"], **overrides)
    except ConfigurationError as e:
        _fail(command, str(e), output_json, exit_code=3)


def _run(ledger: AgentLedger, call: Callable[[AgentLedger], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with ledger:
            return await call(ledger)

    return asyncio.run(runner())


def _format_time(ts: Optional[int]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _short(signature: str) -> str:
    return signature if len(signature) <= 20 else f"{signature[:8]}...{signature[-8:]}"


@agentledger_app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Optional[str] = typer.Option(
        None, "--config", "-c",
        help=f"Path to config file (default: $AGENTLEDGER_CONFIG or ./{DEFAULT_CONFIG_FILE})",
    ),
):
    """On-chain audit trail for AI agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    _state["config_path"] = config


@agentledger_app.command("log")
def log_cmd(
    action: str = typer.Argument(..., help="Action name (e.g., 'decision:buy')"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent ID (overrides config)"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Metadata as a JSON object"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only the signature"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Encode and show the memo without sending"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Write one audit record on-chain."""
    payload: Optional[Dict[str, Any]] = None
    if data is not None:
        try:
            payload = json.loads(data)
        except ValueError as e:
            _fail("log", f"--data is not valid JSON: {e}", output_json, exit_code=3)
        if not isinstance(payload, dict):
            _fail("log", "--data must be a JSON object", output_json, exit_code=3)

    if dry_run:
        try:
            config = load_config(_state["config_path"], agent_id=agent)
            encoded = encode_memo(config.agent_id, action, payload)
        except ConfigurationError as e:
            _fail("log", str(e), output_json, exit_code=3)
        except PayloadTooLarge as e:
            _fail("log", str(e), output_json, error_code=e.code, size=e.size)
        except ValueError as e:
            _fail("log", str(e), output_json, exit_code=3)

        if output_json:
            _output_json({
                "command": "log",
                "status": "ok",
                "dry_run": True,
                "memo": encoded.payload.to_dict(),
                "size": encoded.size,
                "max_size": MAX_MEMO_BYTES,
            })
        console.print(encoded.text)
        console.print(f"[dim]{encoded.size}/{MAX_MEMO_BYTES} bytes, not sent (--dry-run)[/]")
        return

    ledger = _open_ledger("log", output_json, agent_id=agent)
    try:
        result = _run(ledger, lambda lg: lg.log(action, payload))
    except ValueError as e:
        _fail("log", str(e), output_json, exit_code=3)

    if output_json:
        _output_json({
            "command": "log",
            "status": "ok" if result.success else "error",
            **result.to_dict(),
        })

    if not result.success:
        console.print(f"[red]Log failed:[/] {escape(result.error or '')}")
        if result.signature:
            console.print(f"[dim]Submitted as {result.signature}; check with 'agentledger verify'.[/]")
        raise typer.Exit(1)

    if quiet:
        print(result.signature)
        return

    console.print(f"[green]Logged[/] [bold]{escape(action)}[/] as [cyan]{escape(ledger.agent_id)}[/]")
    console.print(f"  Signature: {result.signature}")
    console.print(f"  Slot:      {result.slot}")
    console.print(f"  Size:      {result.size}/{MAX_MEMO_BYTES} bytes")
    console.print(f"  Explorer:  {result.explorer_url}")


@agentledger_app.command("history")
def history_cmd(
    wallet: Optional[str] = typer.Argument(None, help="Wallet address (default: configured wallet)"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Only records from this agent ID"),
    action: Optional[str] = typer.Option(None, "--action", help="Only records with this action"),
    limit: int = typer.Option(DEFAULT_LIMIT, "--limit", "-n", help="Maximum records (1-1000)"),
    after: Optional[str] = typer.Option(None, "--after", help="Records at or after this time (ISO-8601 or Unix seconds)"),
    before: Optional[str] = typer.Option(None, "--before", help="Records at or before this time (ISO-8601 or Unix seconds)"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Start below this transaction signature"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List audit records for a wallet, newest first."""
    try:
        options = QueryOptions(
            agent_id=agent,
            action=action,
            after=after,
            before=before,
            limit=limit,
            before_signature=cursor,
        )
    except ValidationError as e:
        _fail("history", f"Invalid options: {e}", output_json, exit_code=3)

    ledger = _open_ledger("history", output_json)
    address = wallet or ledger.wallet_address
    try:
        entries = _run(ledger, lambda lg: lg.query(address, options))
    except ConfigurationError as e:
        _fail("history", str(e), output_json, exit_code=3)
    except TransportFailure as e:
        _fail("history", str(e), output_json, error_code=e.code)

    next_cursor = entries[-1].signature if len(entries) == options.limit else None

    if output_json:
        _output_json({
            "command": "history",
            "status": "ok",
            "wallet": address,
            "strategy": ledger.strategy,
            "count": len(entries),
            "entries": [e.to_dict() for e in entries],
            "next_cursor": next_cursor,
        })

    if not entries:
        console.print(f"[yellow]No audit records found for {address}[/]")
        return

    table = Table(show_header=True, header_style="bold", title=f"Audit trail: {address}")
    table.add_column("Slot", justify="right")
    table.add_column("Confirmed")
    table.add_column("Agent", style="cyan")
    table.add_column("Action", style="bold")
    table.add_column("Data", style="dim")
    table.add_column("Signature", style="dim")

    for entry in entries:
        table.add_row(
            str(entry.slot),
            _format_time(entry.block_time),
            escape(entry.memo.agent),
            escape(entry.memo.action),
            escape(json.dumps(entry.memo.data, separators=(",", ":"))) if entry.memo.data else "",
            _short(entry.signature),
        )

    console.print(table)
    console.print(f"[dim]{len(entries)} record(s) via {ledger.strategy} history. Agent IDs are self-reported.[/]")
    if next_cursor:
        console.print(f"[dim]More may exist: --cursor {next_cursor}[/]")


@agentledger_app.command("verify")
def verify_cmd(
    signature: str = typer.Argument(..., help="Transaction signature"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Check that a transaction exists and carries a valid audit record."""
    if not is_signature(signature):
        _fail("verify", f"Not a valid transaction signature: {signature}", output_json, exit_code=3)

    ledger = _open_ledger("verify", output_json)
    result = _run(ledger, lambda lg: lg.verify(signature))

    if result.valid:
        status = "ok"
    elif result.reason_code in (E_NOT_FOUND, E_DECODE_MISMATCH):
        status = "failed"
    else:
        status = "error"

    if output_json:
        _output_json({"command": "verify", "status": status, **result.to_dict()})

    if not result.valid:
        console.print(f"[red]INVALID[/] {signature}")
        console.print(f"  {result.reason_code}: {escape(result.reason or '')}")
        raise typer.Exit(2 if status == "failed" else 1)

    memo = result.memo
    console.print(Panel.fit(
        f"[green]VALID[/] audit record\n\n"
        f"Agent:     [cyan]{escape(memo.agent)}[/] [dim](self-reported)[/]\n"
        f"Action:    [bold]{escape(memo.action)}[/]\n"
        f"Recorded:  {_format_time(memo.ts)}\n"
        f"Confirmed: {_format_time(result.block_time)} (slot {result.slot})\n"
        f"Data:      {escape(json.dumps(memo.data)) if memo.data else '-'}\n"
        f"Explorer:  {result.explorer_url}",
        title="agentledger verify",
    ))


@agentledger_app.command("wallet")
def wallet_cmd(
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the configured wallet, network and balance."""
    ledger = _open_ledger("wallet", output_json)
    balance: Optional[float] = None
    error: Optional[str] = None
    try:
        balance = _run(ledger, lambda lg: lg.get_balance())
    except TransportFailure as e:
        error = str(e)

    if output_json:
        _output_json({
            "command": "wallet",
            "status": "ok" if error is None else "error",
            "address": ledger.wallet_address,
            "agent_id": ledger.agent_id,
            "network": ledger.network,
            "strategy": ledger.strategy,
            "balance_sol": balance,
            **({"error": error} if error else {}),
        })

    console.print(f"Address:  [cyan]{ledger.wallet_address}[/]")
    console.print(f"Agent ID: {ledger.agent_id}")
    console.print(f"Network:  {ledger.network}")
    console.print(f"History:  {ledger.strategy}")
    if error is not None:
        console.print(f"[red]Balance unavailable:[/] {escape(error)}")
        raise typer.Exit(1)
    console.print(f"Balance:  {balance:.9f} SOL")
    if balance == 0 and ledger.network == "devnet":
        console.print("[dim]Fund it with: agentledger airdrop[/]")


@agentledger_app.command("airdrop")
def airdrop_cmd(
    amount: float = typer.Option(0.5, "--amount", help="SOL to request"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Request devnet SOL for the configured wallet."""
    ledger = _open_ledger("airdrop", output_json)
    try:
        signature = _run(ledger, lambda lg: lg.request_airdrop(amount))
    except ConfigurationError as e:
        _fail("airdrop", str(e), output_json, exit_code=3)
    except TransportFailure as e:
        _fail("airdrop", f"Airdrop failed: {e}", output_json, error_code=e.code, rate_limited=e.rate_limited)

    if output_json:
        _output_json({
            "command": "airdrop",
            "status": "ok",
            "address": ledger.wallet_address,
            "amount_sol": amount,
            "signature": signature,
        })

    console.print(f"[green]Airdropped[/] {amount} SOL to {ledger.wallet_address}")
    console.print(f"  Signature: {signature}")


@agentledger_app.command("generate-wallet")
def generate_wallet_cmd(
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the keypair to this file"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Create a new wallet (Solana CLI JSON format)."""
    keypair = generate_keypair()
    path: Optional[Path] = None
    if output:
        try:
            path = write_keypair(keypair, output)
        except ConfigurationError as e:
            _fail("generate-wallet", str(e), output_json, exit_code=3)

    secret = None if path else base58.b58encode(keypair.secret_key).decode("ascii")

    if output_json:
        data: Dict[str, Any] = {
            "command": "generate-wallet",
            "status": "ok",
            "address": keypair.address,
        }
        if path:
            data["path"] = str(path)
        else:
            data["private_key"] = secret
        _output_json(data)

    console.print(f"Address: [cyan]{keypair.address}[/]")
    if path:
        console.print(f"Saved:   {path}")
        console.print(f"[dim]Use it with: export AGENT_WALLET_PATH={path}[/]")
    else:
        console.print("[yellow]Keep this secret. Anyone with it controls the wallet.[/]")
        console.print(f"AGENT_PRIVATE_KEY={secret}")


@agentledger_app.command("init")
def init_cmd(
    agent_id: Optional[str] = typer.Option(None, "--agent-id", help="Agent identity to record"),
    mainnet: bool = typer.Option(False, "--mainnet", help="Use mainnet-beta instead of devnet"),
    wallet_path: str = typer.Option("wallet.json", "--wallet-path", help="Wallet file (created if missing)"),
    helius_api_key: Optional[str] = typer.Option(None, "--helius-api-key", help="Enables indexed history"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Write agentledger.json and create the wallet if needed."""
    config_path = Path(_state["config_path"] or DEFAULT_CONFIG_FILE)
    if not agent_id:
        _fail("init", "--agent-id is required", output_json, exit_code=3)
    if config_path.exists() and not force:
        _fail("init", f"{config_path} already exists (use --force to overwrite)", output_json, exit_code=3)

    try:
        config = LedgerConfig(
            agent_id=agent_id,
            network="mainnet-beta" if mainnet else "devnet",
            wallet_path=wallet_path,
            helius_api_key=helius_api_key,
        )
    except ValidationError as e:
        _fail("init", f"Invalid configuration: {e}", output_json, exit_code=3)

    created = False
    try:
        if Path(wallet_path).expanduser().exists():
            keypair = Keypair.from_file(wallet_path)
        else:
            keypair = generate_keypair()
            write_keypair(keypair, wallet_path)
            created = True
    except ConfigurationError as e:
        _fail("init", str(e), output_json, exit_code=3)

    write_config(config, config_path)

    if output_json:
        _output_json({
            "command": "init",
            "status": "ok",
            "config_path": str(config_path),
            "agent_id": config.agent_id,
            "network": config.network,
            "wallet_path": wallet_path,
            "wallet_created": created,
            "address": keypair.address,
        })

    console.print(f"[green]Wrote[/] {config_path}")
    console.print(f"  Agent ID: {config.agent_id}")
    console.print(f"  Network:  {config.network}")
    console.print(f"  Wallet:   {keypair.address} ({'created' if created else 'existing'} {wallet_path})")
    console.print()
    if config.network == "devnet":
        console.print("Next: [bold]agentledger airdrop[/] then [bold]agentledger log hello[/]")
    else:
        console.print("Next: fund the wallet, then [bold]agentledger log hello[/]")


@agentledger_app.command("version")
def version_cmd(
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show AgentLedger version and memo format."""
    from agentledger import __version__

    if output_json:
        _output_json({
            "command": "version",
            "status": "ok",
            "version": __version__,
            "memo_version": MEMO_VERSION,
            "max_memo_bytes": MAX_MEMO_BYTES,
        })

    console.print(f"[bold]AgentLedger {__version__}[/]")
    console.print("On-chain audit trail for AI agents")
    console.print()
    console.print(f"Memo format: v{MEMO_VERSION}, max {MAX_MEMO_BYTES} bytes")
    console.print("Verify: exit 0/1/2/3 (valid / error / invalid record / bad input)")
