from __future__ import annotations
from typing import Any, Dict, List, NoReturn, Optional, Tuple

import yaml
import typer

from .balances import balances_to_frame, fetch_snapshot
from .catalog import build_steps, steps_to_frame
from .config import DEFAULT_EXCHANGE, allocator_config, load_config
from .contracts import ExchangeClient, PublisherPlugin
from .exceptions import PluginNotFoundError, YieldboxError
from .logging_utils import configure_logging
from .registry import PluginRegistry
from .runner import handler
from .validate import validate_config

app = typer.Typer(name="yieldbox", help="Stablecoin yield allocator CLI")


def _as_json(obj) -> str:
    import json
    return json.dumps(obj, ensure_ascii=False, indent=2)


def _exchange_from_config(reg: PluginRegistry, cfg: Dict[str, Any], name: Optional[str]) -> ExchangeClient:
    block = (cfg.get("plugins", {}) or {}).get("exchange") or {}
    exchange_name = name or block.get("name") or DEFAULT_EXCHANGE
    params_init = block.get("params_init", {}) if block.get("name", exchange_name) == exchange_name else {}
    return reg.create_exchange(exchange_name, **params_init)


def _publishers_from_config(reg: PluginRegistry, cfg: Dict[str, Any]) -> List[Tuple[PublisherPlugin, Dict[str, Any]]]:
    out = []
    for p in (cfg.get("plugins", {}) or {}).get("publishers", []) or []:
        out.append((reg.create_publisher(p["name"], **p.get("params_init", {})), p.get("params", {})))
    return out


def _fail(message: str) -> NoReturn:
    print(_as_json({"success": False, "error": message}))
    raise typer.Exit(code=1)


def cmd_plugins_list(reg: PluginRegistry, as_json: bool = False):
    if as_json:
        payload = {
            "exchanges": sorted(reg.exchanges.keys()),
            "publishers": sorted(reg.publishers.keys()),
        }
        print(_as_json(payload))
        return

    def show(title, d):
        print(title + ":")
        for k in sorted(d): print("  -", k)
    show("Exchanges", reg.exchanges)
    show("Publishers", reg.publishers)


def cmd_plugins_info(reg: PluginRegistry, name: str, as_json: bool = False):
    for gname, d in reg.groups().items():
        if name in d:
            meta = getattr(d[name], "meta", None)
            payload = {
                "group": gname,
                "name": name,
                "meta": meta.__dict__ if meta else None,
            }
            print(_as_json(payload) if as_json else payload)
            return
    all_names = sorted(set(k for d in reg.groups().values() for k in d))
    raise PluginNotFoundError(name, "any", all_names)


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Log level (default: LOG_LEVEL env or INFO)"),
):
    """Allocate stablecoin balances into the best-yielding earn products."""
    configure_logging(log_level)


@app.command()
def plugins(
    action: str = typer.Argument(help="Action: list or info"),
    name: str = typer.Option(None, help="Plugin name (required for 'info')"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List or inspect plugins."""
    reg = PluginRegistry.discover()
    if action == "list":
        cmd_plugins_list(reg, as_json=json)
    elif action == "info":
        if not name:
            raise typer.BadParameter("--name is required for 'plugins info'")
        cmd_plugins_info(reg, name, as_json=json)
    else:
        raise typer.BadParameter(f"Unknown action: {action}. Use list or info.")


@app.command()
def validate(
    config: str = typer.Argument(..., help="Path to config YAML"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Validate an allocator config file."""
    with open(config, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    findings = validate_config(cfg)
    payload = [f.__dict__ for f in findings]
    if json:
        print(_as_json(payload))
    else:
        for f in findings:
            print(f.level.upper() + ":", f.message)
        if not findings:
            print("OK")
    if any(f.level == "error" for f in findings):
        raise SystemExit(2)


@app.command()
def run(
    config: str = typer.Option(None, "-c", "--config", help="Path to config YAML"),
    locked: Optional[bool] = typer.Option(None, "--locked/--no-locked", help="Include locked products"),
    exchange: str = typer.Option(None, "-e", "--exchange", help="Exchange plugin name"),
):
    """Run one allocation and print the result payload."""
    try:
        cfg = load_config(config)
        alloc = allocator_config(cfg)
        reg = PluginRegistry.discover()
        client = _exchange_from_config(reg, cfg, exchange)
        publishers = _publishers_from_config(reg, cfg)
    except (YieldboxError, EnvironmentError, ValueError) as e:
        _fail(str(e))

    include_locked = alloc.include_locked if locked is None else locked
    payload = handler(None, None, include_locked, config=alloc, exchange=client, publishers=publishers)
    print(_as_json(payload))
    if not payload["success"]:
        raise typer.Exit(code=1)


@app.command()
def plan(
    config: str = typer.Option(None, "-c", "--config", help="Path to config YAML"),
    locked: Optional[bool] = typer.Option(None, "--locked/--no-locked", help="Include locked products"),
    exchange: str = typer.Option(None, "-e", "--exchange", help="Exchange plugin name"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Print the yield-ranked allocation steps without touching balances."""
    try:
        cfg = load_config(config)
        alloc = allocator_config(cfg)
        client = _exchange_from_config(PluginRegistry.discover(), cfg, exchange)
        steps = build_steps(
            client,
            alloc.tracked_currencies,
            include_locked=alloc.include_locked if locked is None else locked,
            max_workers=alloc.max_workers,
        )
    except (YieldboxError, EnvironmentError, ValueError) as e:
        _fail(str(e))

    frame = steps_to_frame(steps)
    if json:
        print(frame.to_json(orient="records", indent=2))
    else:
        print(frame.to_string(index=False))


@app.command()
def balances(
    config: str = typer.Option(None, "-c", "--config", help="Path to config YAML"),
    exchange: str = typer.Option(None, "-e", "--exchange", help="Exchange plugin name"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Print funding, spot and earn balances per tracked currency."""
    try:
        cfg = load_config(config)
        alloc = allocator_config(cfg)
        client = _exchange_from_config(PluginRegistry.discover(), cfg, exchange)
        snapshot = fetch_snapshot(client, alloc.tracked_currencies, max_workers=alloc.max_workers)
    except (YieldboxError, EnvironmentError, ValueError) as e:
        _fail(str(e))

    frame = balances_to_frame(snapshot)
    if json:
        print(frame.to_json(orient="records", indent=2))
    else:
        print(frame.to_string(index=False))


if __name__ == "__main__":
    app()
