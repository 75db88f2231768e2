from __future__ import annotations
from typing import Any, Dict, List
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from jsonschema import Draft7Validator

ALLOCATOR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "tracked_currencies": {
            "type": "array",
            "items": {"type": "string", "pattern": "^[A-Z0-9]+$"},
            "minItems": 1,
            "uniqueItems": True,
        },
        "base_currency": {"type": "string", "pattern": "^[A-Z0-9]+$"},
        "min_subscription": {"type": ["string", "number"]},
        "min_notional": {"type": ["string", "number"]},
        "call_delay_seconds": {"type": "number", "minimum": 0},
        "default_product_suffix": {"type": "string", "minLength": 1},
        "include_locked": {"type": "boolean"},
        "max_workers": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

PLUGIN_BLOCK_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string"},
        "params_init": {"type": "object"},
        "params": {"type": "object"},
    },
}


@dataclass
class ValidationFinding:
    level: str  # "error" or "warning"
    message: str


def _schema_findings(instance: Any, schema: Dict[str, Any], where: str) -> List[ValidationFinding]:
    findings = []
    for err in sorted(Draft7Validator(schema).iter_errors(instance), key=lambda e: list(e.path)):
        path = ".".join(str(p) for p in err.path)
        loc = f"{where}.{path}" if path else where
        findings.append(ValidationFinding("error", f"{loc}: {err.message}"))
    return findings


def _decimal_ok(value: Any) -> bool:
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        return False
    return d.is_finite() and d >= 0


def validate_config(cfg: Dict[str, Any]) -> List[ValidationFinding]:
    findings: List[ValidationFinding] = []
    if not isinstance(cfg, dict):
        return [ValidationFinding("error", "config must be a mapping")]

    allocator = cfg.get("allocator", {}) or {}
    findings.extend(_schema_findings(allocator, ALLOCATOR_SCHEMA, "allocator"))
    if isinstance(allocator, dict):
        tracked = allocator.get("tracked_currencies")
        base = allocator.get("base_currency")
        if tracked and base and base not in tracked:
            findings.append(ValidationFinding("error", f"allocator.base_currency {base} is not a tracked currency"))
        for key in ("min_subscription", "min_notional"):
            if key in allocator and not _decimal_ok(allocator[key]):
                findings.append(ValidationFinding("error", f"allocator.{key} must be a non-negative decimal"))
        if allocator.get("call_delay_seconds") == 0:
            findings.append(ValidationFinding("warning", "allocator.call_delay_seconds is 0; the exchange may rate-limit"))

    plugins = cfg.get("plugins", {}) or {}
    if not isinstance(plugins, dict):
        findings.append(ValidationFinding("error", "plugins must be a mapping"))
        return findings
    if "exchange" in plugins:
        findings.extend(_schema_findings(plugins["exchange"], PLUGIN_BLOCK_SCHEMA, "plugins.exchange"))
    for i, pub in enumerate(plugins.get("publishers", []) or []):
        findings.extend(_schema_findings(pub, PLUGIN_BLOCK_SCHEMA, f"plugins.publishers.{i}"))
    return findings
