"""
commission_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains engine
    settings, the VAT table and an optional bundled rule set.  With no
    argument it loads ``commission_config/defaults/engine.yaml``.

Architecture position:
    Configuration -- sits above ``commission_kernel``.  The kernel and the
    engines MUST NEVER import from ``commission_config``; callers pass the
    parsed values in.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` / ``KeyError`` -- the document does not parse.

Audit relevance:
    Every call emits a ``COMMISSION_CONFIG_TRACE`` record with the config
    id, version and checksum, tying a run to the configuration that drove
    it.
"""

from __future__ import annotations

from pathlib import Path

from commission_kernel.logging_config import get_logger
from commission_config.loader import load_yaml_file, parse_config
from commission_config.schema import CommissionConfig, EngineSettings

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "engine.yaml"


def get_active_config(config_path: Path | str | None = None) -> CommissionConfig:
    """
    Load, parse and trace the active configuration.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``defaults/engine.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a value fails validation.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "COMMISSION_CONFIG_TRACE",
        extra={
            "trace_type": "COMMISSION_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "vat_rate_count": len(config.vat_table.rates),
            "rule_count": len(config.rules),
            "tier_validation": config.settings.tier_validation.value,
        },
    )
    return config


__all__ = ["CommissionConfig", "EngineSettings", "get_active_config", "DEFAULT_CONFIG_PATH"]
