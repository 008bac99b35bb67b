"""Load and validate the market's startup configuration.

Configuration arrives either as a JSON file or as an inline JSON string
(``--config-json``).  Both paths accept a leading byte-order mark, since
some Windows editors and shells save UTF-8 text with one, and both reject
anything other than a top-level JSON object.  Parsed payloads are turned
into a frozen :class:`MarketConfig` by :func:`parse_market_config`.

Config file shape (every key optional)::

    {
      "starting_cash": "1000",
      "tick_interval_seconds": 0.5,
      "seed": 42,
      "history_capacity": 200,
      "volatility": {"low_risk": "0.0025", "fake": "0.05", "shitcoin": "0.15"},
      "assets": [
        {"id": "LR1", "name": "BlueCoin", "category": "LowRisk", "price": "100"}
      ]
    }

Environment overrides (applied on top of a loaded config)::

    COINSIM_STARTING_CASH, COINSIM_TICK_SECONDS, COINSIM_SEED
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from .market.assets import DEFAULT_ASSETS, Asset, RiskCategory, build_registry
from .market.history import DEFAULT_HISTORY_CAPACITY
from .market.simulator import DEFAULT_TICK_INTERVAL_SECONDS
from .portfolio.ledger import DEFAULT_STARTING_CASH

ENV_STARTING_CASH = "COINSIM_STARTING_CASH"
ENV_TICK_SECONDS = "COINSIM_TICK_SECONDS"
ENV_SEED = "COINSIM_SEED"


class ConfigLoadError(ValueError):
    """Raised when config loading or parsing fails."""


@dataclass(frozen=True)
class MarketConfig:
    """Startup configuration: seed assets, cash, and cadence."""

    assets: tuple[Asset, ...] = DEFAULT_ASSETS
    starting_cash: Decimal = DEFAULT_STARTING_CASH
    tick_interval: float = DEFAULT_TICK_INTERVAL_SECONDS
    seed: Optional[int] = None
    volatility: dict[str, Decimal] = field(default_factory=dict)
    history_capacity: int = DEFAULT_HISTORY_CAPACITY

    def to_dict(self) -> dict[str, Any]:
        return {
            "starting_cash": str(self.starting_cash),
            "tick_interval_seconds": self.tick_interval,
            "seed": self.seed,
            "history_capacity": self.history_capacity,
            "volatility": {k: str(v) for k, v in sorted(self.volatility.items())},
            "assets": [a.to_dict() for a in self.assets],
        }


_SNIPPET_CHARS = 120


def _require_object(value: Any, where: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigLoadError(
            f"{where} must hold a JSON object at the top level, "
            f"not {type(value).__name__}"
        )
    return value


def load_json_from_path(path: Union[str, Path]) -> dict:
    """Read *path* as a JSON object.  A leading UTF-8 BOM is tolerated.

    Raises:
        ConfigLoadError: Missing file, malformed JSON, or a non-object root.
    """
    source = Path(path)
    try:
        # utf-8-sig drops the BOM when present and is a no-op otherwise.
        text = source.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"config file not found: {source}") from exc

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigLoadError(f"{source} is not valid JSON: {exc}") from exc
    return _require_object(payload, f"config file {source}")


def load_json_from_string(raw: str) -> dict:
    """Parse an inline JSON object, as passed on the command line.

    Shell quoting sometimes leaves the value wrapped in one pair of single
    quotes, so that pair is removed along with surrounding whitespace and a
    leading U+FEFF.

    Raises:
        ConfigLoadError: Malformed JSON or a non-object root.
    """
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] == "'":
        text = text[1:-1].strip()
    text = text.lstrip("\ufeff")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        head = raw if len(raw) <= _SNIPPET_CHARS else raw[:_SNIPPET_CHARS] + "..."
        raise ConfigLoadError(
            f"--config-json value is not valid JSON: {exc} "
            f"({len(raw)} chars, starts with {head!r})"
        ) from exc
    return _require_object(payload, "--config-json value")


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _decimal_field(raw: Any, name: str) -> Decimal:
    if isinstance(raw, bool):
        raise ConfigLoadError(f"{name} must be a number; got {raw!r}")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ConfigLoadError(f"{name} must be a number; got {raw!r}") from exc
    if not value.is_finite():
        raise ConfigLoadError(f"{name} must be finite; got {raw!r}")
    return value


def _int_field(raw: Any, name: str) -> int:
    if isinstance(raw, bool):
        raise ConfigLoadError(f"{name} must be an integer; got {raw!r}")
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ConfigLoadError(f"{name} must be an integer; got {raw!r}") from exc


def _float_field(raw: Any, name: str) -> float:
    if isinstance(raw, bool):
        raise ConfigLoadError(f"{name} must be a number; got {raw!r}")
    try:
        return float(str(raw).strip())
    except ValueError as exc:
        raise ConfigLoadError(f"{name} must be a number; got {raw!r}") from exc


def _parse_asset(row: Any, index: int) -> Asset:
    if not isinstance(row, Mapping):
        raise ConfigLoadError(f"assets[{index}] must be an object")
    asset_id = row.get("id", row.get("asset_id"))
    if not isinstance(asset_id, str) or not asset_id.strip():
        raise ConfigLoadError(f"assets[{index}].id must be a non-empty string")
    name = row.get("name") or asset_id
    try:
        category = RiskCategory.normalize(row.get("category"))
    except ValueError as exc:
        raise ConfigLoadError(f"assets[{index}]: {exc}") from exc
    price = _decimal_field(row.get("price"), f"assets[{index}].price")
    return Asset(asset_id=asset_id.strip(), name=str(name), category=category, price=price)


def parse_market_config(payload: Mapping[str, Any]) -> MarketConfig:
    """Build a validated MarketConfig from a parsed JSON object.

    Raises:
        ConfigLoadError: On any invalid field.
    """
    config = MarketConfig()
    updates: dict[str, Any] = {}

    if "assets" in payload:
        rows = payload["assets"]
        if not isinstance(rows, list):
            raise ConfigLoadError("assets must be a list")
        assets = [_parse_asset(row, i) for i, row in enumerate(rows)]
        try:
            updates["assets"] = build_registry(assets)
        except ValueError as exc:
            raise ConfigLoadError(f"invalid assets: {exc}") from exc

    if payload.get("starting_cash") is not None:
        cash = _decimal_field(payload["starting_cash"], "starting_cash")
        if cash < 0:
            raise ConfigLoadError(f"starting_cash must be non-negative; got {cash}")
        updates["starting_cash"] = cash

    if payload.get("tick_interval_seconds") is not None:
        interval = _float_field(payload["tick_interval_seconds"], "tick_interval_seconds")
        if not 0 < interval < float("inf"):
            raise ConfigLoadError(f"tick_interval_seconds must be positive; got {interval}")
        updates["tick_interval"] = interval

    if payload.get("seed") is not None:
        updates["seed"] = _int_field(payload["seed"], "seed")

    if payload.get("history_capacity") is not None:
        capacity = _int_field(payload["history_capacity"], "history_capacity")
        if capacity < 2:
            raise ConfigLoadError(f"history_capacity must be >= 2; got {capacity}")
        updates["history_capacity"] = capacity

    if payload.get("volatility") is not None:
        raw_vol = payload["volatility"]
        if not isinstance(raw_vol, Mapping):
            raise ConfigLoadError("volatility must be an object of category -> bound")
        volatility: dict[str, Decimal] = {}
        for category, bound in raw_vol.items():
            try:
                key = RiskCategory.normalize(category)
            except ValueError as exc:
                raise ConfigLoadError(f"volatility: {exc}") from exc
            value = _decimal_field(bound, f"volatility.{category}")
            if value < 0:
                raise ConfigLoadError(f"volatility.{category} must be non-negative; got {value}")
            volatility[key] = value
        updates["volatility"] = volatility

    return replace(config, **updates)


def load_market_config(
    *,
    config_path: Union[str, Path, None] = None,
    config_json: Union[str, None] = None,
) -> MarketConfig:
    """Load market config from a file path, a JSON string, or the defaults.

    Exactly one of ``config_path`` and ``config_json`` may be provided.

    Raises:
        ConfigLoadError: If both arguments are provided, or if loading fails.
    """
    if config_path is not None and config_json is not None:
        raise ConfigLoadError(
            "Provide only one of config_path or config_json, not both."
        )

    if config_path is not None:
        return parse_market_config(load_json_from_path(config_path))

    if config_json is not None:
        return parse_market_config(load_json_from_string(config_json))

    return MarketConfig()


def apply_env_overrides(
    config: MarketConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> MarketConfig:
    """Overlay ``COINSIM_*`` environment variables onto *config*."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if env.get(ENV_STARTING_CASH):
        overrides["starting_cash"] = env[ENV_STARTING_CASH]
    if env.get(ENV_TICK_SECONDS):
        overrides["tick_interval_seconds"] = env[ENV_TICK_SECONDS]
    if env.get(ENV_SEED):
        overrides["seed"] = env[ENV_SEED]
    if not overrides:
        return config

    parsed = parse_market_config(overrides)
    return replace(
        config,
        starting_cash=parsed.starting_cash if "starting_cash" in overrides else config.starting_cash,
        tick_interval=parsed.tick_interval if "tick_interval_seconds" in overrides else config.tick_interval,
        seed=parsed.seed if "seed" in overrides else config.seed,
    )
