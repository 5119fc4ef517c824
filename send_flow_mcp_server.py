#!/usr/bin/env python3
"""
MCP server for the Bitcoin send flow.

Exposes the Form -> Review -> TransactionRequest flow as MCP tools. Interfaces
live in an in-process host for the lifetime of the server; the background
rates refresh runs on the server's event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from account_store import AccountStore
from chain_client import EsploraChainClient
from interface_host import InMemoryInterfaceHost
from rates_client import COINGECKO_API_URL, CoinGeckoRatesClient
from send_flow import SendFlow
from send_flow_config import SendFlowConfig
from send_flow_types import (
    FORM_SCREEN,
    REVIEW_SCREEN,
    FormContext,
    Preferences,
    ReviewContext,
    UserCancelledError,
)
from send_flow_view import render_form, render_review

log = logging.getLogger(__name__)

app = Server("send_flow")

# Input fields in the order they are applied; each dispatches the form event
# of the same name.
_INPUT_FIELDS = ("account", "recipient", "amount")


@dataclass
class _Runtime:
    config: SendFlowConfig
    host: InMemoryInterfaceHost
    accounts: AccountStore
    flow: SendFlow
    waiters: dict[str, asyncio.Task] = field(default_factory=dict)


_runtime: _Runtime | None = None


def _build_runtime(cfg: SendFlowConfig) -> _Runtime:
    chain = EsploraChainClient.from_env()
    rates = CoinGeckoRatesClient(cfg.price_api_url or COINGECKO_API_URL)
    accounts = AccountStore.from_config(cfg, chain)
    host = InMemoryInterfaceHost(Preferences(locale=cfg.locale, currency=cfg.fiat_currency))
    flow = SendFlow(
        host,
        accounts,
        chain,
        rates,
        target_blocks_confirmation=cfg.target_blocks_confirmation,
        fallback_fee_rate=cfg.fallback_fee_rate,
        refresh_interval_seconds=cfg.refresh_interval_seconds,
    )
    host.set_cron_handler(flow.on_cron)
    return _Runtime(config=cfg, host=host, accounts=accounts, flow=flow)


async def _get_runtime() -> _Runtime:
    global _runtime
    if _runtime is None:
        cfg = await asyncio.to_thread(SendFlowConfig.from_env)
        _runtime = await asyncio.to_thread(_build_runtime, cfg)
    return _runtime


def _error_response(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": False, "error": message}))]


def _ok(**payload: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": True, **payload}))]


async def _view(runtime: _Runtime, interface_id: str) -> dict[str, Any]:
    if not runtime.host.is_open(interface_id):
        return {"open": False}
    screen, data = await runtime.host.get_interface(interface_id)
    if screen == FORM_SCREEN:
        view = render_form(FormContext.from_dict(data))
    elif screen == REVIEW_SCREEN:
        view = render_review(
            ReviewContext.from_dict(data), runtime.config.target_blocks_confirmation
        )
    else:
        view = {"screen": screen}
    return {"open": True, **view}


def _require_interface_id(arguments: dict[str, Any]) -> str:
    interface_id = str(arguments.get("interface_id") or "").strip()
    if not interface_id:
        raise ValueError("Missing interface_id.")
    return interface_id


@app.list_tools()
async def list_tools() -> List[Tool]:
    interface_id = {"type": "string", "description": "Interface id returned by send_flow_open"}
    return [
        Tool(
            name="send_flow_list_accounts",
            description="List the configured Bitcoin accounts that can send.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="send_flow_open",
            description=(
                "Open a send form for an account. Fee and exchange rates refresh in "
                "the background while the form is open."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "account_id": {"type": "string", "description": "Account id to send from"},
                },
                "required": ["account_id"],
            },
        ),
        Tool(
            name="send_flow_set_input",
            description=(
                "Type into the send form. Each provided field is applied in order "
                "(account, recipient, amount) and the fee is recomputed."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "interface_id": interface_id,
                    "account": {"type": "string", "description": "Switch to this account id"},
                    "recipient": {"type": "string", "description": "Recipient address"},
                    "amount": {"type": "string", "description": "Amount in BTC, e.g. 0.0005"},
                },
                "required": ["interface_id"],
            },
        ),
        Tool(
            name="send_flow_event",
            description=(
                "Trigger a UI event: max, clearRecipient, clearAmount, confirm, cancel, "
                "refreshRates on the form; send or headerBack on the review screen. "
                "Confirm and send require explicit user approval."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "interface_id": interface_id,
                    "event": {"type": "string", "description": "Event name"},
                },
                "required": ["interface_id", "event"],
            },
        ),
        Tool(
            name="send_flow_get",
            description="Return the current screen of a send flow.",
            inputSchema={
                "type": "object",
                "properties": {"interface_id": interface_id},
                "required": ["interface_id"],
            },
        ),
        Tool(
            name="send_flow_result",
            description=(
                "Return the outcome of a send flow: pending, cancelled, or the "
                "transaction request (recipient, amount in sats, fee rate). A finished "
                "outcome is returned once."
            ),
            inputSchema={
                "type": "object",
                "properties": {"interface_id": interface_id},
                "required": ["interface_id"],
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> List[TextContent]:
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        return _error_response("Invalid arguments. Expected an object.")

    if name == "send_flow_list_accounts":
        return await _handle_list_accounts()
    if name == "send_flow_open":
        return await _handle_open(arguments)
    if name == "send_flow_set_input":
        return await _handle_set_input(arguments)
    if name == "send_flow_event":
        return await _handle_event(arguments)
    if name == "send_flow_get":
        return await _handle_get(arguments)
    if name == "send_flow_result":
        return await _handle_result(arguments)
    return _error_response(f"Unknown tool: {name}")


async def _handle_list_accounts() -> List[TextContent]:
    try:
        runtime = await _get_runtime()
        return _ok(network=runtime.accounts.network, accounts=runtime.accounts.list_accounts())
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_open(arguments: dict[str, Any]) -> List[TextContent]:
    account_id = str(arguments.get("account_id") or "").strip()
    if not account_id:
        return _error_response("Missing account_id.")
    try:
        runtime = await _get_runtime()
        interface_id = await runtime.flow.open(account_id)
        runtime.waiters[interface_id] = asyncio.ensure_future(runtime.flow.wait(interface_id))
        return _ok(interface_id=interface_id, view=await _view(runtime, interface_id))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_set_input(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        interface_id = _require_interface_id(arguments)
        values = {k: str(arguments[k]) for k in _INPUT_FIELDS if arguments.get(k) is not None}
        if not values:
            return _error_response("Provide at least one of account, recipient or amount.")
        runtime = await _get_runtime()
        for name, value in values.items():
            await runtime.host.set_state(interface_id, **{name: value})
            await runtime.flow.route_user_input(interface_id, name)
        return _ok(interface_id=interface_id, view=await _view(runtime, interface_id))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_event(arguments: dict[str, Any]) -> List[TextContent]:
    event = str(arguments.get("event") or "").strip()
    if not event:
        return _error_response("Missing event.")
    try:
        interface_id = _require_interface_id(arguments)
        runtime = await _get_runtime()
        await runtime.flow.route_user_input(interface_id, event)
        return _ok(interface_id=interface_id, view=await _view(runtime, interface_id))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_get(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        interface_id = _require_interface_id(arguments)
        runtime = await _get_runtime()
        return _ok(interface_id=interface_id, view=await _view(runtime, interface_id))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_result(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        interface_id = _require_interface_id(arguments)
        runtime = await _get_runtime()
        waiter = runtime.waiters.get(interface_id)
        if waiter is None:
            return _error_response(f"Unknown interface_id: {interface_id}")
        if not waiter.done():
            return _ok(interface_id=interface_id, status="pending")
        # The outcome is reported once.
        del runtime.waiters[interface_id]
        try:
            request = waiter.result()
        except UserCancelledError:
            return _ok(interface_id=interface_id, status="cancelled")
        return _ok(interface_id=interface_id, status="completed", request=request.to_dict())
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def main() -> None:
    # stdout carries the protocol.
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    runtime = await _get_runtime()
    logging.getLogger().setLevel(runtime.config.log_level)
    log.info("Send flow server ready on %s", runtime.config.network)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(read_stream, write_stream, app.create_initialization_options())
    finally:
        await runtime.host.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
