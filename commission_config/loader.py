"""
Configuration Loader (``commission_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``commission_config.schema``.  Callers obtain configuration
through ``commission_config.get_active_config()``; the functions here are
the parsing steps behind it.

Invariants enforced
-------------------
* YAML floats never reach a ``DecimalValue``: every float is converted via
  ``str()`` before parsing, so ``0.0875`` stays ``0.0875``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import yaml

from commission_kernel.domain.rules import Rule
from commission_kernel.domain.validation import TierValidation
from commission_kernel.domain.vat import VatRate, VatTable
from commission_kernel.utils.hashing import hash_payload
from commission_config.schema import CommissionConfig, EngineSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def coerce_numbers(value: Any) -> Any:
    """Replace every float in a parsed YAML tree with its ``str()`` form."""
    if isinstance(value, float):
        return str(value)
    if isinstance(value, dict):
        return {k: coerce_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [coerce_numbers(v) for v in value]
    return value


def parse_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    defaults = EngineSettings()
    return EngineSettings(
        batch_size=int(data.get("batch_size", defaults.batch_size)),
        max_workers=int(data.get("max_workers", defaults.max_workers)),
        display_places=int(data.get("display_places", defaults.display_places)),
        tier_validation=TierValidation(
            data.get("tier_validation", defaults.tier_validation.value)
        ),
        default_actor_id=str(data.get("default_actor_id", defaults.default_actor_id)),
    )


def parse_vat_table(data: dict[str, Any]) -> VatTable:
    """
    Parse the ``vat`` section.

    Accepts ``rates`` as a list of ``{jurisdiction, rate, effective_from?,
    effective_to?}`` entries.
    """
    rates = tuple(
        VatRate(
            jurisdiction=str(entry["jurisdiction"]),
            rate=str(entry["rate"]),
            effective_from=parse_date(entry.get("effective_from")),
            effective_to=parse_date(entry.get("effective_to")),
        )
        for entry in data.get("rates", [])
    )
    return VatTable(rates=rates, default_jurisdiction=data.get("default_jurisdiction"))


def parse_rule(data: dict[str, Any]) -> Rule:
    """Parse one rule entry; the shape is that of ``Rule.snapshot()``."""
    entry = dict(data)
    entry.setdefault("version", 1)
    return Rule.from_snapshot(entry, verify="checksum" in entry)


def parse_config(data: dict[str, Any]) -> CommissionConfig:
    """Parse a whole configuration document (already loaded from YAML)."""
    data = coerce_numbers(data)
    return CommissionConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        settings=parse_engine_settings(data.get("engine", {})),
        vat_table=parse_vat_table(data.get("vat", {})),
        rules=tuple(parse_rule(r) for r in data.get("rules", [])),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of the parsed document."""
    return hash_payload(data)
