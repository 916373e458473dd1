"""
Operator command line for the settlement SDK.

    settlement chains
    settlement balance 0xDEPOSITOR --chain ETH-SEPOLIA --chain BASE-SEPOLIA
    settlement aggregate 0xDEPOSITOR --source ETH-SEPOLIA=wallet-1 --destination-wallet wallet-9 \\
        --recipient 0xRECIPIENT --amount 10
    settlement records --status pending
    settlement reconcile <record-id>
"""
import json
import logging
from typing import List, Optional, Dict

import typer

from .config import NetworkConfig, SettlementConfig
from .exceptions import SettlementError, InsufficientAggregateFunds
from .gateway import get_gateway_client
from .models import AggregationResult, RecordStatus
from .orchestrator import TransferOrchestrator
from .records import TransferRecordStore
from .signer import get_signer
from .utils import format_usdc, to_micros

app = typer.Typer(help="USDC cross-chain settlement through Circle Gateway", no_args_is_help=True)

logger = logging.getLogger(__name__)


def _orchestrator(config: SettlementConfig) -> TransferOrchestrator:
    return TransferOrchestrator(
        signer=get_signer(config),
        gateway_api=get_gateway_client(config.gateway_api_url),
        config=config,
        record_store=TransferRecordStore(config.record_store_path),
    )


def _parse_sources(sources: List[str]) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for item in sources:
        chain, sep, wallet_id = item.partition("=")
        if not sep or not chain or not wallet_id:
            raise typer.BadParameter(f"expected CHAIN=WALLET_ID, got {item!r}")
        parsed[chain] = wallet_id
    return parsed


def _print_result(result: AggregationResult) -> None:
    for record in result.records:
        amount = format_usdc(record.attested_amount or record.requested_amount)
        detail = f" ({record.error})" if record.error else ""
        typer.echo(f"  {record.source_chain:<14} {record.status.value:<8} {amount}{detail}")
    typer.echo(f"Transferred {format_usdc(result.transferred_micros)} USDC, "
               f"remaining {format_usdc(result.remaining_micros)}")


@app.callback()
def main_callback(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@app.command()
def chains():
    """List supported chains and their Gateway domains."""
    for tag in NetworkConfig.supported_chains():
        chain = NetworkConfig.get_chain(tag)
        typer.echo(f"{tag:<14} domain={chain.domain_id:<3} usdc={chain.usdc_address}")


@app.command()
def balance(
    depositor: str = typer.Argument(..., help="Depositor address"),
    chain: Optional[List[str]] = typer.Option(None, "--chain", "-c", help="Chain tag (repeatable)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
):
    """Show the unified Gateway balance of a depositor."""
    config = SettlementConfig.from_env()
    try:
        unified = get_gateway_client(config.gateway_api_url).query_unified_balance(
            depositor, chain or NetworkConfig.supported_chains()
        )
    except SettlementError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps(unified.model_dump(mode="json", by_alias=True), indent=2))
        return
    for entry in unified.per_chain:
        typer.echo(f"{entry.chain_tag:<14} {format_usdc(entry.micros)}")
    typer.echo(f"{'TOTAL':<14} {format_usdc(unified.total_micros)}")


@app.command()
def aggregate(
    depositor: str = typer.Argument(..., help="Depositor address shared by the source wallets"),
    source: List[str] = typer.Option(..., "--source", "-s", help="CHAIN=WALLET_ID (repeatable, in priority order)"),
    destination_wallet: str = typer.Option(..., "--destination-wallet", help="Wallet id submitting the mint"),
    recipient: str = typer.Option(..., "--recipient", help="Address receiving minted USDC"),
    amount: Optional[str] = typer.Option(None, "--amount", help="USDC to collect; omit to drain every chain"),
    destination_chain: Optional[str] = typer.Option(None, "--destination-chain"),
    preferred_chain: Optional[str] = typer.Option(None, "--preferred-chain"),
):
    """Collect Gateway balance from several chains into one destination."""
    sources = _parse_sources(source)
    config = SettlementConfig.from_env()
    try:
        result = _orchestrator(config).aggregate(
            depositor=depositor,
            source_wallet_ids=sources,
            destination_wallet_id=destination_wallet,
            recipient=recipient,
            target_amount=to_micros(amount) if amount is not None else None,
            destination_chain=destination_chain,
            preferred_chain=preferred_chain,
        )
    except InsufficientAggregateFunds as e:
        _print_result(e.result)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    except SettlementError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    _print_result(result)


@app.command()
def records(
    status: Optional[RecordStatus] = typer.Option(None, "--status", help="Only show records in this status"),
):
    """List journaled transfer records."""
    config = SettlementConfig.from_env()
    for record in TransferRecordStore(config.record_store_path).list(status):
        typer.echo(
            f"{record.record_id}  {record.source_chain:<14} {record.state.value:<10} "
            f"{record.status.value:<8} {format_usdc(record.attested_amount or record.requested_amount)}"
        )


@app.command()
def reconcile(record_id: str = typer.Argument(..., help="Record id (the first burn-intent salt)")):
    """Refresh a journaled transfer from the custodial backend without resubmitting."""
    config = SettlementConfig.from_env()
    try:
        record = _orchestrator(config).reconcile(record_id)
    except SettlementError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{record.record_id}  {record.state.value}  {record.status.value}")


def main():
    app()


if __name__ == "__main__":
    main()
