# PATH: config/__init__.py
"""
Configuration loading utilities for the borrow engine.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.exceptions import ConfigError
from core.models import MarketConfig


CONFIG_DIR = Path(__file__).parent


def load_yaml(filename: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Name of file in config directory
        config_dir: Directory override (tests, deployments)

    Returns:
        Parsed YAML as dict
    """
    filepath = (config_dir or CONFIG_DIR) / filename
    if not filepath.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {filepath}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{filepath} must contain a mapping at top level")
    return data


def load_chains(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load chains configuration."""
    return load_yaml("chains.yaml", config_dir)


def load_markets(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load raw borrow market entries."""
    return load_yaml("markets.yaml", config_dir)


def get_chain_config(chain_key: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Get configuration for a specific chain.

    Args:
        chain_key: Chain identifier (e.g., 'celo')

    Returns:
        Chain configuration dict
    """
    chains = load_chains(config_dir)
    if chain_key not in chains:
        raise KeyError(f"Unknown chain: {chain_key}")
    return chains[chain_key]


def get_chain_config_by_id(chain_id: int, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Chain entry whose chain_id matches."""
    for chain in load_chains(config_dir).values():
        if int(chain.get("chain_id", -1)) == chain_id:
            return chain
    raise KeyError(f"No chain configured with id {chain_id}")


def get_market_config(market_key: str, config_dir: Optional[Path] = None) -> MarketConfig:
    """
    Get a validated borrow market.

    Raises:
        KeyError: unknown market
        ConfigError: entry is incomplete or malformed
    """
    markets = load_markets(config_dir)
    if market_key not in markets:
        raise KeyError(f"Unknown market: {market_key}")
    return MarketConfig.from_dict(market_key, markets[market_key])
