"""Quickstart: run one allocation against the paper exchange.

This example shows how to call the yieldbox runner from Python
(instead of the CLI) and inspect the results.

Usage:
    python examples/01_paper_allocation.py
"""

from decimal import Decimal

from yieldbox.catalog import build_steps, steps_to_frame
from yieldbox.config import AllocatorConfig
from yieldbox.events import RecordingEventSink
from yieldbox.registry import PluginRegistry
from yieldbox.runner import run_allocation

# 1. Discover all available plugins
registry = PluginRegistry.discover()
print("Available exchanges:", list(registry.exchanges.keys()))

# 2. A paper account: idle USDT in funding, some USDC in spot, an old earn position
exchange = registry.create_exchange(
    "sim.earn.v1",
    funding={"USDT": "250"},
    spot={"USDC": "120", "FDUSD": "2"},
    positions={"USDT001": {"asset": "USDT", "amount": "500"}},
    flexible_products=[
        {
            "productId": "USDT001",
            "asset": "USDT",
            "latestAnnualPercentageRate": "0.045",
            "tierAnnualPercentageRate": {"0-200USDT": "0.035"},
        },
        {"productId": "USDC001", "asset": "USDC", "latestAnnualPercentageRate": "0.052"},
        {
            "productId": "FDUSD001",
            "asset": "FDUSD",
            "latestAnnualPercentageRate": "0.03",
            "tierAnnualPercentageRate": {"0-100FDUSD": "0.07"},
        },
    ],
)
config = AllocatorConfig(call_delay_seconds=0, min_subscription=Decimal("0.1"))

# 3. Look at the ranked plan first (read-only)
print(steps_to_frame(build_steps(exchange, config.tracked_currencies)).to_string(index=False))

# 4. Run
events = RecordingEventSink()
result = run_allocation(exchange, config, events=events)

# 5. Inspect results
print(f"\nRun ID:  {result.run_id}")
print(f"Halt:    {result.halt_reason or 'plan exhausted'}")
print("Subscriptions:")
for sub in result.subscriptions:
    print(f"  {sub['product_id']}: {sub['amount']} {sub['currency']} @ {sub['effective_yield']}")
print("Swept:")
for sub in result.swept:
    print(f"  {sub['product_id']}: {sub['amount']} {sub['currency']}")
print("Events:", ", ".join(events.names()))
