"""CLI for begin-cli - a Cardano wallet for agents and humans, from the terminal."""

from __future__ import annotations

import asyncio
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from begin_cli.cli.output import OutputContext
from begin_cli.config import (
    MNEMONIC_ENV,
    PASSWORD_ENV,
    CliConfig,
    get_config_path,
    get_journal_path,
    get_root_dir,
    load_config,
    resolve_blockfrost_key,
)
from begin_cli.errors import BeginCliError, already_exists, input_error, not_found
from begin_cli.logging_config import setup_logging
from begin_cli.wallet.networks import Network, get_network, list_network_names

app = typer.Typer(
    name="begin",
    help="Cardano wallet for the terminal: keys, addresses and transactions.",
    no_args_is_help=True,
)

MIN_PASSWORD_LENGTH = 8


@dataclass
class AppContext:
    """Per-invocation state handed to every command through ``ctx.obj``."""

    out: OutputContext
    root: Path
    config: CliConfig
    network: Network


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        typer.echo(f"begin-cli {version('begin-cli')}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    network: Optional[str] = typer.Option(
        None,
        "--network",
        "-n",
        help=f"Network to use ({', '.join(list_network_names())}); defaults to config",
        envvar="BEGIN_CLI_NETWORK",
    ),
    json_output: bool = typer.Option(False, "--json", help="Machine-readable JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr"),
    log_json: bool = typer.Option(False, "--log-json", help="Emit logs as JSON lines"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Cardano wallet for the terminal: keys, addresses and transactions."""
    setup_logging("DEBUG" if verbose else "WARNING", "json" if log_json else "human")
    out = OutputContext(json_mode=json_output)
    root = get_root_dir()
    try:
        config = load_config(get_config_path(root))
        selected = get_network(network or config.network)
    except BeginCliError as e:
        out.fail(e)
    except ValueError as e:
        out.fail(input_error(f"Invalid configuration: {e}", code="INVALID_CONFIG"))
    ctx.obj = AppContext(out=out, root=root, config=config, network=selected)


def _run(coro):
    """Run an async function synchronously."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def _wallets(app_ctx: AppContext):
    from begin_cli.wallet.manager import WalletManager

    return WalletManager(app_ctx.root, app_ctx.config)


def _ask_new_password(out: OutputContext) -> str:
    env_password = os.environ.get(PASSWORD_ENV)
    if env_password:
        password = env_password
    elif not out.interactive:
        raise input_error(
            f"No password given. Set {PASSWORD_ENV} when running non-interactively.",
            code="MISSING_ARGUMENT",
        )
    else:
        password = out.console.input("[bold]Set wallet password: [/bold]", password=True)
        confirm = out.console.input("[bold]Confirm password: [/bold]", password=True)
        if password != confirm:
            raise input_error("Passwords do not match.", code="PASSWORD_MISMATCH")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise input_error(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", code="WEAK_PASSWORD"
        )
    return password


def _password_prompt(out: OutputContext):
    """``(wallet, attempt) -> password``: the environment first, then the terminal."""
    env_password = os.environ.get(PASSWORD_ENV)

    def prompt(wallet: str, attempt: int) -> str:
        if env_password and attempt == 1:
            return env_password
        if not out.interactive:
            raise input_error(
                f"Wallet '{wallet}' is locked. Set {PASSWORD_ENV} when running non-interactively.",
                code="WALLET_LOCKED",
            )
        if attempt > 1:
            out.console.print("[red]Incorrect password or corrupted wallet file. Try again.[/red]")
        return out.console.input(f"[bold]Password for '{wallet}': [/bold]", password=True)

    return prompt


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Create, restore and inspect encrypted wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("create")
def wallet_create(
    ctx: typer.Context,
    name: str = typer.Argument(help="Wallet name (letters, digits, - and _)"),
    words: int = typer.Option(24, "--words", "-w", help="Seed phrase length (12, 15, 18, 21 or 24)"),
):
    """Generate a new seed phrase and store it encrypted."""
    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    network = app_ctx.network
    try:
        wallets = _wallets(app_ctx)
        if wallets.keystore.exists(name):
            raise already_exists(name)
        password = _ask_new_password(out)
        phrase, record = wallets.create(name, network.network_id, password, words)
    except BeginCliError as e:
        out.fail(e)
    except ValueError as e:
        out.fail(input_error(str(e)))

    def render():
        numbered = "\n".join(
            f"{i + 1:>2}. {w}" for i, w in enumerate(phrase)
        )
        out.console.print(Panel(
            f"[bold green]Wallet '{name}' created![/bold green]\n\n"
            f"Address: [cyan]{record.addresses.payment}[/cyan]\n"
            f"Network: {network.name}\n\n"
            f"[bold yellow]Write down your seed phrase. It will not be shown again.[/bold yellow]\n\n"
            f"{numbered}",
            title="New Wallet",
        ))
        if out.interactive:
            typer.confirm("I have written down my seed phrase", default=False, abort=True)

    out.success(
        {
            "name": name,
            "mnemonic": " ".join(phrase),
            "address": record.addresses.payment,
            "stakeAddress": record.addresses.stake,
            "network": network.name,
        },
        render,
    )


@wallet_app.command("restore")
def wallet_restore(
    ctx: typer.Context,
    name: str = typer.Argument(help="Wallet name"),
    mnemonic: Optional[str] = typer.Option(
        None, "--mnemonic", "-m", help="Seed phrase (prompted for if omitted)"
    ),
):
    """Restore a wallet from an existing seed phrase."""
    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        wallets = _wallets(app_ctx)
        if wallets.keystore.exists(name):
            raise already_exists(name)
        if not mnemonic:
            if not out.interactive:
                raise input_error("--mnemonic is required in non-interactive mode", code="MISSING_ARGUMENT")
            mnemonic = out.console.input("[bold]Seed phrase: [/bold]", password=True)
        password = _ask_new_password(out)
        record = wallets.restore(name, mnemonic, password, app_ctx.network.network_id)
    except BeginCliError as e:
        out.fail(e)

    out.success(
        {
            "name": name,
            "address": record.addresses.payment,
            "stakeAddress": record.addresses.stake,
            "network": app_ctx.network.name,
        },
        lambda: out.console.print(Panel(
            f"[bold green]Wallet '{name}' restored![/bold green]\n\n"
            f"Address: [cyan]{record.addresses.payment}[/cyan]",
            title="Wallet Restored",
        )),
    )


@wallet_app.command("address")
def wallet_address(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Wallet name (default wallet if omitted)"),
    full: bool = typer.Option(False, "--full", help="Show enterprise address too"),
):
    """Show wallet addresses. No password needed."""
    from begin_cli.wallet.address import derive_addresses
    from begin_cli.wallet.manager import SourceKind

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        wallets = _wallets(app_ctx)
        source = wallets.resolve_source(name)
        if source.kind is SourceKind.ENVIRONMENT:
            derived = derive_addresses(os.environ[MNEMONIC_ENV], app_ctx.network.network_id)
            data = {
                "source": "environment",
                "address": derived.base_address,
                "stakeAddress": derived.stake_address,
                "enterpriseAddress": derived.enterprise_address,
            }
        else:
            cached = wallets.keystore.get_addresses(source.wallet)
            data = {
                "source": source.wallet,
                "address": cached.payment,
                "stakeAddress": cached.stake,
            }
    except BeginCliError as e:
        out.fail(e)

    def render():
        lines = [f"Payment: [cyan]{data['address']}[/cyan]"]
        if data.get("stakeAddress"):
            lines.append(f"Stake:   [cyan]{data['stakeAddress']}[/cyan]")
        if full and data.get("enterpriseAddress"):
            lines.append(f"Enterprise: [cyan]{data['enterpriseAddress']}[/cyan]")
        out.console.print(Panel("\n".join(lines), title=f"Addresses ({data['source']})"))

    out.success(data, render)


@wallet_app.command("list")
def wallet_list(ctx: typer.Context):
    """List stored wallets."""
    from begin_cli.wallet.address import shorten_address

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    wallets = _wallets(app_ctx)
    default = wallets.get_default()

    rows = []
    for name in wallets.keystore.list():
        try:
            record = wallets.keystore.load_record(name)
        except BeginCliError as e:
            rows.append({"name": name, "error": e.message})
            continue
        rows.append({
            "name": name,
            "address": record.addresses.payment,
            "networkId": int(record.network_id),
            "createdAt": record.created_at.isoformat(),
            "default": name == default,
        })

    def render():
        if not rows:
            out.console.print("[dim]No wallets yet. Run 'begin wallet create <name>'.[/dim]")
            return
        table = Table(title="Wallets")
        table.add_column("Name", style="cyan")
        table.add_column("Network")
        table.add_column("Address", style="dim")
        table.add_column("Created")
        for row in rows:
            if "error" in row:
                table.add_row(row["name"], "-", f"[red]{row['error']}[/red]", "-")
                continue
            marker = " [green](default)[/green]" if row["default"] else ""
            table.add_row(
                row["name"] + marker,
                "mainnet" if row["networkId"] == 1 else "testnet",
                shorten_address(row["address"]),
                row["createdAt"][:10],
            )
        out.console.print(table)

    out.success({"wallets": rows, "default": default}, render)


@wallet_app.command("delete")
def wallet_delete(
    ctx: typer.Context,
    name: str = typer.Argument(help="Wallet name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a wallet file. Make sure the seed phrase is backed up."""
    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        wallets = _wallets(app_ctx)
        if not wallets.keystore.exists(name):
            raise not_found(name)
        if not yes and out.interactive:
            typer.confirm(f"Delete wallet '{name}'? This cannot be undone", abort=True)
        wallets.delete(name)
    except BeginCliError as e:
        out.fail(e)
    out.success({"deleted": name}, lambda: out.console.print(f"[bold]Wallet '{name}' deleted.[/bold]"))


@wallet_app.command("default")
def wallet_default(
    ctx: typer.Context,
    name: str = typer.Argument(help="Wallet to use when --wallet is not given"),
):
    """Set the default wallet."""
    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        _wallets(app_ctx).set_default(name)
    except BeginCliError as e:
        out.fail(e)
    out.success({"default": name}, lambda: out.console.print(f"Default wallet: [cyan]{name}[/cyan]"))


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------

def _blockfrost(app_ctx: AppContext):
    """Blockfrost client for the selected network; the caller closes it."""
    from begin_cli.net.retry import RetryPolicy
    from begin_cli.services.blockfrost import BlockfrostClient

    config = app_ctx.config
    return BlockfrostClient(
        app_ctx.network,
        resolve_blockfrost_key(config, app_ctx.network.name),
        base_url=config.provider.blockfrost.url,
        policy=RetryPolicy.from_config(config.retry),
    )


def _local_sdk(app_ctx: AppContext, offline: bool = False):
    from begin_cli.core.sdk import PyCardanoSDK

    if offline:
        # Signing never touches the network.
        return PyCardanoSDK(app_ctx.network, api_key="")
    config = app_ctx.config
    return PyCardanoSDK(
        app_ctx.network,
        resolve_blockfrost_key(config, app_ctx.network.name),
        config.provider.blockfrost.url,
    )


def _minswap(app_ctx: AppContext):
    from begin_cli.net.retry import RetryPolicy
    from begin_cli.services.minswap import MinswapClient

    return MinswapClient(
        app_ctx.network.name,
        partner=app_ctx.config.swap.partner,
        policy=RetryPolicy.from_config(app_ctx.config.retry),
    )


def _lifecycle(app_ctx: AppContext, *, provider=None, sdk=None, approve=None, journal: bool = True):
    """Assemble a lifecycle controller for this invocation."""
    from begin_cli.core.lifecycle import TransactionLifecycle
    from begin_cli.storage.journal import TransactionJournal

    config = app_ctx.config
    out = app_ctx.out
    return TransactionLifecycle(
        app_ctx.network,
        wallets=_wallets(app_ctx),
        sdk=sdk,
        provider=provider,
        password_prompt=_password_prompt(out),
        approve=approve,
        poll_interval=config.confirmation.poll_interval,
        max_attempts=config.confirmation.max_attempts,
        max_password_attempts=3 if out.interactive else 1,
        journal=TransactionJournal(get_journal_path(app_ctx.root)) if journal else None,
    )


def _summary_lines(summary) -> list[str]:
    from begin_cli.core.transaction import (
        DelegationIntent,
        SwapIntent,
        TransferIntent,
        WithdrawalIntent,
        lovelace_to_ada,
    )

    intent = summary.intent
    if isinstance(intent, TransferIntent):
        assets = "".join(f"\n  + {a.quantity} {a.unit}" for a in intent.assets)
        lines = [
            f"Send:     [bold]{lovelace_to_ada(intent.lovelace)} ADA[/bold]{assets}",
            f"To:       {intent.to}",
        ]
    elif isinstance(intent, DelegationIntent):
        lines = [
            f"Delegate: [bold]{intent.pool_id}[/bold]",
            f"Stake:    {intent.stake_address}",
        ]
        if intent.register:
            lines.append(
                f"Deposit:  {lovelace_to_ada(intent.lovelace)} ADA, refunded when the stake key is deregistered"
            )
    elif isinstance(intent, WithdrawalIntent):
        lines = [
            f"Withdraw: [bold]{lovelace_to_ada(intent.lovelace)} ADA[/bold]",
            f"Stake:    {intent.stake_address}",
        ]
    elif isinstance(intent, SwapIntent):
        lines = [
            f"Sell:     [bold]{intent.amount}[/bold] {intent.token_in}",
            f"Receive:  {intent.amount_out or '?'} {intent.token_out}",
            f"Minimum:  {intent.min_amount_out} (slippage {intent.slippage}%)",
        ]
    else:
        lines = [f"Cancel:   {', '.join(intent.order_ids)}"]

    fee = f"{lovelace_to_ada(summary.fee)} ADA" if summary.fee is not None else "unknown"
    lines += [
        f"From:     {summary.sender}",
        f"Fee:      {fee}",
        f"Network:  {summary.network}",
    ]
    return lines


def _approver(out: OutputContext, yes: bool):
    """Confirmation prompt shown before signing, or ``None`` when it is skipped."""
    if yes or not out.interactive:
        return None

    def approve(summary) -> bool:
        out.console.print(Panel("\n".join(_summary_lines(summary)), title="Confirm Transaction"))
        return typer.confirm("Sign and submit this transaction?", default=False)

    return approve


def _report(app_ctx: AppContext, result, title: str) -> None:
    from begin_cli.core.lifecycle import TxState

    out = app_ctx.out
    network = app_ctx.network
    if result.state is TxState.FAILED:
        out.fail(result.error)
    if result.state is TxState.CANCELLED:
        out.success(result.to_dict(), lambda: out.console.print("[yellow]Transaction cancelled.[/yellow]"))
        return

    data = result.to_dict()
    lines = [f"State: [bold]{result.state.value}[/bold]"]
    if result.unsigned_path:
        lines.append(f"Unsigned transaction: {result.unsigned_path}")
        lines.append(f"[dim]Sign it with: begin sign {result.unsigned_path}[/dim]")
    if result.signed_path:
        lines.append(f"Signed transaction: {result.signed_path}")
        lines.append(f"[dim]Submit it with: begin submit {result.signed_path}[/dim]")
    if result.tx_id:
        lines.append(f"Tx: [cyan]{result.tx_id}[/cyan]")
        if result.state in (TxState.SUCCEEDED, TxState.TIMED_OUT_UNCONFIRMED):
            lines.append(f"Explorer: {network.explorer_url}/transaction/{result.tx_id}")
    if result.state is TxState.TIMED_OUT_UNCONFIRMED:
        out.warn(result.error.message)

    out.success(data, lambda: out.console.print(Panel("\n".join(lines), title=title)))


def _saved_or(title: str, dry_run: bool) -> str:
    return "Unsigned Transaction Saved" if dry_run else title


@app.command("send")
def send(
    ctx: typer.Context,
    to: str = typer.Argument(help="Recipient address"),
    amount: str = typer.Argument(help="Amount in ADA (e.g. 10 or 1.5)"),
    asset: Optional[list[str]] = typer.Option(
        None, "--asset", "-a", help="Native asset 'policyId.assetName:amount' (repeatable)"
    ),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet to send from"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build only and save the unsigned transaction"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the unsigned transaction"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Send ADA (and native assets) to an address."""
    from begin_cli.core.transaction import TransferIntent

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        intent = TransferIntent.create(to, amount, asset, app_ctx.network)
        sdk = _local_sdk(app_ctx)
        provider = _blockfrost(app_ctx)
        lifecycle = _lifecycle(app_ctx, provider=provider, sdk=sdk, approve=_approver(out, yes))
    except BeginCliError as e:
        out.fail(e)

    async def _send():
        try:
            return await lifecycle.send(
                intent,
                wallet=wallet,
                dry_run=dry_run,
                output_path=output,
                wait=not no_wait,
            )
        finally:
            await provider.aclose()

    _report(app_ctx, _run(_send()), _saved_or("Transaction", dry_run))


@app.command("sign")
def sign(
    ctx: typer.Context,
    unsigned_file: Path = typer.Argument(help="Unsigned transaction file"),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet to sign with"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the signed transaction"),
):
    """Sign a saved unsigned transaction (offline)."""
    app_ctx: AppContext = ctx.obj
    lifecycle = _lifecycle(app_ctx, sdk=_local_sdk(app_ctx, offline=True), journal=False)
    result = _run(lifecycle.sign(unsigned_file, wallet=wallet, output_path=output))
    _report(app_ctx, result, "Transaction Signed")


@app.command("submit")
def submit(
    ctx: typer.Context,
    signed_file: Path = typer.Argument(help="Signed transaction file"),
    wait: bool = typer.Option(False, "--wait", help="Wait for on-chain confirmation"),
):
    """Submit a signed transaction."""
    app_ctx: AppContext = ctx.obj
    try:
        provider = _blockfrost(app_ctx)
        lifecycle = _lifecycle(app_ctx, provider=provider)
    except BeginCliError as e:
        app_ctx.out.fail(e)

    async def _submit():
        try:
            return await lifecycle.submit(signed_file, wait=wait)
        finally:
            await provider.aclose()

    _report(app_ctx, _run(_submit()), "Transaction Submitted")


# ------------------------------------------------------------------
# tx sub-commands
# ------------------------------------------------------------------

tx_app = typer.Typer(name="tx", help="Inspect the local transaction journal.", no_args_is_help=True)
app.add_typer(tx_app, name="tx")


@tx_app.command("list")
def tx_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-l", help="Number of entries"),
    state: Optional[str] = typer.Option(None, "--state", "-s", help="Filter by state"),
):
    """Show recent transactions started from this machine."""
    from begin_cli.storage.journal import TransactionJournal

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        records = _run(TransactionJournal(get_journal_path(app_ctx.root)).list(limit=limit, state=state))
    except BeginCliError as e:
        out.fail(e)

    def render():
        if not records:
            out.console.print("[dim]No transactions recorded.[/dim]")
            return
        state_colors = {
            "succeeded": "green", "failed": "red", "cancelled": "dim",
            "timed_out_unconfirmed": "yellow",
        }
        table = Table(title="Transactions")
        table.add_column("When", style="dim")
        table.add_column("Tx", style="cyan")
        table.add_column("Network")
        table.add_column("Wallet")
        table.add_column("State")
        for r in records:
            color = state_colors.get(r.state, "white")
            table.add_row(
                r.created_at.strftime("%Y-%m-%d %H:%M"),
                (r.tx_id or "-")[:16],
                r.network,
                r.wallet or "-",
                f"[{color}]{r.state}[/{color}]",
            )
        out.console.print(table)

    out.success({"transactions": [r.model_dump(mode="json") for r in records]}, render)


@tx_app.command("status")
def tx_status(
    ctx: typer.Context,
    tx_id: str = typer.Argument(help="Transaction id"),
):
    """Check whether a transaction is on-chain."""
    from begin_cli.storage.journal import TransactionJournal

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out

    async def _status():
        async with _blockfrost(app_ctx) as client:
            status = await client.tx_status(tx_id)
        journal = TransactionJournal(get_journal_path(app_ctx.root))
        if status.confirmed and await journal.get(tx_id) is not None:
            await journal.update_state(tx_id, "succeeded")
        return status

    try:
        status = _run(_status())
    except BeginCliError as e:
        out.fail(e)

    def render():
        if status.confirmed:
            confirmations = f" ({status.confirmations} confirmations)" if status.confirmations else ""
            out.console.print(f"[green]Confirmed[/green]{confirmations}: [cyan]{tx_id}[/cyan]")
        else:
            out.console.print(f"[yellow]Not yet on-chain:[/yellow] {tx_id}")

    out.success(
        {"txId": tx_id, "confirmed": status.confirmed, "confirmations": status.confirmations},
        render,
    )


# ------------------------------------------------------------------
# stake sub-commands
# ------------------------------------------------------------------

stake_app = typer.Typer(name="stake", help="Stake pool delegation and rewards.", no_args_is_help=True)
app.add_typer(stake_app, name="stake")


def _wallet_stake_address(app_ctx: AppContext, wallet: Optional[str]) -> str:
    wallets = _wallets(app_ctx)
    return wallets.stake_address(wallets.resolve_source(wallet), app_ctx.network.network_id)


@stake_app.command("pools")
def stake_pools(
    ctx: typer.Context,
    query: Optional[str] = typer.Argument(None, help="Ticker, name or pool id to search for"),
    limit: int = typer.Option(10, "--limit", "-l", min=1, max=100, help="Maximum number of pools"),
):
    """List or search stake pools."""
    from begin_cli.wallet.address import shorten_address

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out

    async def _pools():
        async with _blockfrost(app_ctx) as client:
            if query:
                return await client.search_pools(query, limit)
            return await client.pools(limit)

    try:
        pools = _run(_pools())
    except BeginCliError as e:
        out.fail(e)

    def render():
        if not pools:
            out.console.print("[dim]No matching pools.[/dim]")
            return
        table = Table(title="Stake Pools")
        table.add_column("Ticker", style="cyan")
        table.add_column("Name")
        table.add_column("Margin", justify="right")
        table.add_column("Saturation", justify="right")
        table.add_column("Delegators", justify="right")
        table.add_column("Pool", style="dim")
        for p in pools:
            color = "red" if p.saturation > 100 else "yellow" if p.saturation > 90 else "green"
            table.add_row(
                p.ticker,
                p.name,
                f"{p.margin:.2f}%",
                f"[{color}]{p.saturation:.1f}%[/{color}]",
                str(p.live_delegators),
                shorten_address(p.pool_id),
            )
        out.console.print(table)

    out.success({"pools": [asdict(p) for p in pools]}, render)


@stake_app.command("status")
def stake_status(
    ctx: typer.Context,
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet to inspect"),
    stake_address: Optional[str] = typer.Option(
        None, "--stake-address", help="Inspect this stake address instead of a wallet"
    ),
):
    """Show delegation and available rewards. No password needed."""
    from begin_cli.core.transaction import lovelace_to_ada
    from begin_cli.wallet.address import is_valid_address

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        if stake_address:
            if not stake_address.startswith("stake") or not is_valid_address(stake_address, app_ctx.network):
                raise input_error(f"Invalid stake address: {stake_address}", code="INVALID_ADDRESS")
            address = stake_address
        else:
            address = _wallet_stake_address(app_ctx, wallet)
    except BeginCliError as e:
        out.fail(e)

    async def _status():
        async with _blockfrost(app_ctx) as client:
            status = await client.account(address)
            pool = await client.pool(status.pool_id) if status.pool_id else None
        return status, pool

    try:
        status, pool = _run(_status())
    except BeginCliError as e:
        out.fail(e)

    def render():
        lines = [f"Stake address: [cyan]{address}[/cyan]"]
        if not status.registered:
            lines.append("[yellow]Stake key not registered.[/yellow] Delegate to a pool to start earning rewards.")
        elif pool is not None:
            lines.append(f"Delegated to:  [bold]{pool.ticker}[/bold] {pool.name}")
            lines.append(f"Pool:          {pool.pool_id}")
        else:
            lines.append(f"Delegated to:  {status.pool_id or 'nobody'}")
        if status.active_epoch is not None:
            lines.append(f"Active since:  epoch {status.active_epoch}")
        lines.append(f"Rewards:       [green]{lovelace_to_ada(status.rewards_available)} ADA[/green]")
        lines.append(f"Withdrawn:     {lovelace_to_ada(status.total_withdrawn)} ADA")
        out.console.print(Panel("\n".join(lines), title="Delegation"))

    data = asdict(status)
    data["pool"] = asdict(pool) if pool is not None else None
    data["rewards_ada"] = lovelace_to_ada(status.rewards_available)
    out.success(data, render)


@stake_app.command("delegate")
def stake_delegate(
    ctx: typer.Context,
    pool_id: str = typer.Argument(help="Pool id (pool1...)"),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet to delegate"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build only and save the unsigned transaction"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the unsigned transaction"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Delegate the wallet's stake to a pool, registering the stake key first if needed."""
    from begin_cli.core.transaction import DelegationIntent, validate_pool_id

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        validate_pool_id(pool_id)
        stake = _wallet_stake_address(app_ctx, wallet)
        sdk = _local_sdk(app_ctx)
        provider = _blockfrost(app_ctx)
        lifecycle = _lifecycle(app_ctx, provider=provider, sdk=sdk, approve=_approver(out, yes))
    except BeginCliError as e:
        out.fail(e)

    async def _delegate():
        try:
            pool = await provider.pool(pool_id)
            if pool is None:
                raise input_error(
                    f"Stake pool {pool_id} not found on {app_ctx.network.name}", code="POOL_NOT_FOUND"
                )
            if pool.retiring_epoch is not None:
                out.warn(f"Pool {pool.ticker} retires in epoch {pool.retiring_epoch}.")
            account = await provider.account(stake)
            if account.registered and account.pool_id == pool_id:
                out.warn(f"Already delegated to {pool.ticker}.")
            intent = DelegationIntent.create(stake, pool_id, register=not account.registered)
            return await lifecycle.send(
                intent,
                wallet=wallet,
                dry_run=dry_run,
                output_path=output,
                wait=not no_wait,
            )
        finally:
            await provider.aclose()

    try:
        result = _run(_delegate())
    except BeginCliError as e:
        out.fail(e)
    _report(app_ctx, result, _saved_or("Delegation", dry_run))


@stake_app.command("withdraw")
def stake_withdraw(
    ctx: typer.Context,
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet whose rewards to withdraw"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build only and save the unsigned transaction"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the unsigned transaction"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Withdraw all available staking rewards to the wallet."""
    from begin_cli.core.transaction import WithdrawalIntent

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        stake = _wallet_stake_address(app_ctx, wallet)
        sdk = _local_sdk(app_ctx)
        provider = _blockfrost(app_ctx)
        lifecycle = _lifecycle(app_ctx, provider=provider, sdk=sdk, approve=_approver(out, yes))
    except BeginCliError as e:
        out.fail(e)

    async def _withdraw():
        try:
            account = await provider.account(stake)
            if not account.registered:
                raise input_error(
                    "Stake key is not registered. Delegate first to earn rewards.",
                    code="NOT_REGISTERED",
                )
            if account.rewards_available <= 0:
                return None
            return await lifecycle.send(
                WithdrawalIntent(stake_address=stake, lovelace=account.rewards_available),
                wallet=wallet,
                dry_run=dry_run,
                output_path=output,
                wait=not no_wait,
            )
        finally:
            await provider.aclose()

    try:
        result = _run(_withdraw())
    except BeginCliError as e:
        out.fail(e)
    if result is None:
        out.success(
            {"state": "no_rewards", "stakeAddress": stake, "rewardsAvailable": "0"},
            lambda: out.console.print("[yellow]No rewards available to withdraw.[/yellow]"),
        )
        return
    _report(app_ctx, result, _saved_or("Rewards Withdrawn", dry_run))


# ------------------------------------------------------------------
# swap sub-commands
# ------------------------------------------------------------------

swap_app = typer.Typer(name="swap", help="Token swaps through the Minswap aggregator.", no_args_is_help=True)
app.add_typer(swap_app, name="swap")


def _quote_panel(quote, sell, buy) -> Panel:
    from begin_cli.core.swap import format_route, price_impact_level

    color = {"critical": "red", "high": "yellow"}.get(price_impact_level(quote.price_impact), "green")
    lines = [
        f"Sell:          {quote.amount_in} {sell.ticker}",
        f"Receive:       [bold]{quote.amount_out}[/bold] {buy.ticker}",
        f"Minimum:       {quote.min_amount_out} {buy.ticker}",
    ]
    if quote.effective_price:
        lines.append(f"Rate:          1 {sell.ticker} = {quote.effective_price} {buy.ticker}")
    lines += [
        f"Price impact:  [{color}]{quote.price_impact * 100:.2f}%[/{color}]",
        f"Fees:          LP {quote.lp_fee}, DEX {quote.dex_fee}, aggregator {quote.aggregator_fee} ADA",
        f"Route:         {format_route(quote.route, sell, buy)}",
    ]
    return Panel("\n".join(lines), title="Swap Quote")


def _warn_price_impact(out: OutputContext, price_impact: float) -> None:
    from begin_cli.core.swap import price_impact_level

    level = price_impact_level(price_impact)
    if level == "critical":
        out.warn(f"Very high price impact ({price_impact * 100:.2f}%). You may lose a large share of the value.")
    elif level == "high":
        out.warn(f"High price impact ({price_impact * 100:.2f}%).")


@swap_app.command("quote")
def swap_quote(
    ctx: typer.Context,
    token_in: str = typer.Option("ADA", "--from", help="Token to sell: ticker, token id or policyId.assetName"),
    token_out: str = typer.Option(..., "--to", help="Token to buy"),
    amount: str = typer.Option(..., "--amount", help="Amount to sell, in decimal units"),
    slippage: float = typer.Option(0.5, "--slippage", help="Slippage tolerance in percent"),
):
    """Quote a swap without building a transaction."""
    from begin_cli.core.swap import format_route, resolve_pair, validate_slippage, validate_swap_amount

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        validate_slippage(slippage)
        amount = validate_swap_amount(amount)
        client = _minswap(app_ctx)
    except BeginCliError as e:
        out.fail(e)

    async def _quote():
        try:
            sell, buy = await resolve_pair(token_in, token_out, client)
            quote = await client.estimate(sell.token_id, buy.token_id, amount, slippage)
            return sell, buy, quote
        finally:
            await client.aclose()

    try:
        sell, buy, quote = _run(_quote())
    except BeginCliError as e:
        out.fail(e)

    def render():
        out.console.print(_quote_panel(quote, sell, buy))
        _warn_price_impact(out, quote.price_impact)

    data = asdict(quote)
    data["route_description"] = format_route(quote.route, sell, buy)
    out.success(data, render)


@swap_app.command("execute")
def swap_execute(
    ctx: typer.Context,
    token_in: str = typer.Option("ADA", "--from", help="Token to sell: ticker, token id or policyId.assetName"),
    token_out: str = typer.Option(..., "--to", help="Token to buy"),
    amount: str = typer.Option(..., "--amount", help="Amount to sell, in decimal units"),
    slippage: float = typer.Option(0.5, "--slippage", help="Slippage tolerance in percent"),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet to swap from"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build only and save the unsigned transaction"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the unsigned transaction"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Quote, sign and submit a swap order."""
    from begin_cli.core.swap import AggregatorSDK, resolve_pair, validate_slippage, validate_swap_amount
    from begin_cli.core.transaction import SwapIntent

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        validate_slippage(slippage)
        amount = validate_swap_amount(amount)
        local = _local_sdk(app_ctx)
        provider = _blockfrost(app_ctx)
        client = _minswap(app_ctx)
        lifecycle = _lifecycle(
            app_ctx, provider=provider, sdk=AggregatorSDK(client, local), approve=_approver(out, yes)
        )
    except BeginCliError as e:
        out.fail(e)

    async def _swap():
        try:
            sell, buy = await resolve_pair(token_in, token_out, client)
            quote = await client.estimate(sell.token_id, buy.token_id, amount, slippage)
            if not out.json_mode:
                out.console.print(_quote_panel(quote, sell, buy))
            _warn_price_impact(out, quote.price_impact)
            intent = SwapIntent(
                token_in=sell.token_id,
                token_out=buy.token_id,
                amount=amount,
                slippage=slippage,
                min_amount_out=quote.min_amount_out,
                amount_out=quote.amount_out,
            )
            return await lifecycle.send(
                intent,
                wallet=wallet,
                dry_run=dry_run,
                output_path=output,
                wait=not no_wait,
            )
        finally:
            await client.aclose()
            await provider.aclose()

    try:
        result = _run(_swap())
    except BeginCliError as e:
        out.fail(e)
    _report(app_ctx, result, _saved_or("Swap Order Submitted", dry_run))


@swap_app.command("orders")
def swap_orders(
    ctx: typer.Context,
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet whose orders to list"),
):
    """List pending swap orders. No password needed."""
    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        wallets = _wallets(app_ctx)
        owner = wallets.sender_address(wallets.resolve_source(wallet), app_ctx.network.network_id)
        client = _minswap(app_ctx)
    except BeginCliError as e:
        out.fail(e)

    async def _orders():
        try:
            return await client.pending_orders(owner)
        finally:
            await client.aclose()

    try:
        orders = _run(_orders())
    except BeginCliError as e:
        out.fail(e)

    def render():
        if not orders:
            out.console.print("[dim]No pending orders.[/dim]")
            return
        table = Table(title="Pending Orders")
        table.add_column("Order", style="cyan")
        table.add_column("DEX")
        table.add_column("Sell", justify="right")
        table.add_column("Min receive", justify="right")
        table.add_column("Status")
        for o in orders:
            table.add_row(
                o.order_id[:16],
                o.dex,
                f"{o.amount_in} {o.token_in[:12]}",
                f"{o.min_amount_out} {o.token_out[:12]}",
                o.status,
            )
        out.console.print(table)

    out.success({"owner": owner, "orders": [asdict(o) for o in orders]}, render)


@swap_app.command("cancel")
def swap_cancel(
    ctx: typer.Context,
    order_ids: list[str] = typer.Argument(help="Ids of the pending orders to cancel"),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet that placed the orders"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build only and save the unsigned transaction"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to save the unsigned transaction"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Do not wait for confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Cancel pending swap orders."""
    from begin_cli.core.swap import AggregatorSDK
    from begin_cli.core.transaction import CancelOrdersIntent

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        local = _local_sdk(app_ctx)
        provider = _blockfrost(app_ctx)
        client = _minswap(app_ctx)
        lifecycle = _lifecycle(
            app_ctx, provider=provider, sdk=AggregatorSDK(client, local), approve=_approver(out, yes)
        )
    except BeginCliError as e:
        out.fail(e)

    async def _cancel():
        try:
            return await lifecycle.send(
                CancelOrdersIntent(order_ids=tuple(dict.fromkeys(order_ids))),
                wallet=wallet,
                dry_run=dry_run,
                output_path=output,
                wait=not no_wait,
            )
        finally:
            await client.aclose()
            await provider.aclose()

    _report(app_ctx, _run(_cancel()), _saved_or("Orders Cancelled", dry_run))


# ------------------------------------------------------------------
# mint sub-commands
# ------------------------------------------------------------------

mint_app = typer.Typer(name="mint", help="NFT minting through NMKR Studio.", no_args_is_help=True)
app.add_typer(mint_app, name="mint")


@mint_app.command("send")
def mint_send(
    ctx: typer.Context,
    nft_uid: str = typer.Argument(help="NMKR NFT uid"),
    to: Optional[str] = typer.Option(None, "--to", help="Receiver (default: your wallet address)"),
    count: int = typer.Option(1, "--count", help="Number of tokens to mint"),
    wallet: Optional[str] = typer.Option(None, "--wallet", "-w", help="Wallet whose address receives the NFT"),
):
    """Mint an uploaded NFT and send it to an address."""
    from begin_cli.net.retry import RetryPolicy
    from begin_cli.services.nmkr import NmkrClient
    from begin_cli.wallet.address import is_valid_address

    app_ctx: AppContext = ctx.obj
    out = app_ctx.out
    try:
        if to is None:
            wallets = _wallets(app_ctx)
            to = wallets.sender_address(wallets.resolve_source(wallet), app_ctx.network.network_id)
        elif not is_valid_address(to, app_ctx.network):
            raise input_error(f"Invalid receiver address: {to}", code="INVALID_ADDRESS")
        client = NmkrClient.from_config(
            app_ctx.config.mint, policy=RetryPolicy.from_config(app_ctx.config.retry)
        )
    except BeginCliError as e:
        out.fail(e)

    async def _mint():
        try:
            return await client.mint_and_send(nft_uid, to, count)
        finally:
            await client.aclose()

    try:
        result = _run(_mint())
    except BeginCliError as e:
        out.fail(e)

    out.success(
        result,
        lambda: out.console.print(Panel(
            f"NFT:   {result['nft_uid']}\n"
            f"To:    {to}\n"
            f"State: {result['state']}\n"
            f"Tx:    [cyan]{result['tx_id'] or 'pending'}[/cyan]",
            title="NFT Minted",
        )),
    )


if __name__ == "__main__":
    app()
