"""
Configuration loading and validation for radmm.
"""
import json
from typing import Any, Dict, List, Sequence, Tuple

from .types import (
    BotConfig,
    InstrumentConfig,
    InventoryConfig,
    LadderConfig,
    LoggingConfig,
    QuoteConfig,
    RiskConfig,
    SpreadConfig,
)

# Documented operating ranges per section
PARAMETER_RANGES: Dict[str, Dict[str, Tuple[float, float]]] = {
    "instrument": {
        "tick_spacing": (1, 16384),
        "fill_fee_rate": (0.0, 0.05),
        "swap_fee_rate": (0.0, 0.05),
    },
    "spread": {
        "base_spread_bps": (10.0, 2000.0),
        "min_spread_bps": (5.0, 1000.0),
        "max_spread_bps": (20.0, 5000.0),
        "bias_threshold": (0.0, 0.5),
        "bias_adjust": (0.0, 0.9),
    },
    "inventory": {
        "target_base_ratio": (0.05, 0.95),
        "rebalance_threshold": (0.02, 0.5),
        "rebalance_target_skew": (-0.2, 0.2),
    },
    "quote": {
        "order_size_base": (1e-8, 10.0),
        "refresh_s": (0.0, 3600.0),
        "max_retries": (0, 10),
        "retry_base_delay_s": (0.0, 60.0),
        "volatility_lookback": (2, 2000),
    },
    "risk": {
        "stop_loss_threshold": (-0.9, -0.01),
        "cancel_max_retries": (0, 20),
        "drawdown_warning_threshold": (-0.9, 0.0),
        "max_inventory_skew": (0.02, 0.5),
        "max_tvl_exposure": (0.001, 1.0),
    },
    "ladder": {
        "levels": (1, 20),
        "level_spacing_pct": (0.001, 0.1),
        "reverse_trade_ratio": (0.0, 1.0),
        "bullish_bias": (0.0, 0.4),
    },
}

BAND_FIELDS = ("skew_bands", "volatility_bands", "volume_bands")


# multiplier in force outside the band table: below the first skew or
# volatility threshold, and above the last volume threshold
BAND_DEFAULTS = {
    "skew_bands": None,
    "volatility_bands": "low_volatility_multiplier",
    "volume_bands": "high_volume_multiplier",
}


def clamp_value(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value to the specified range."""
    return max(min_val, min(max_val, value))


def validate_parameter(section: str, param_name: str, value: Any, strict: bool = False) -> Any:
    """
    Validate a parameter value against its documented range.

    Args:
        section: Configuration section name (e.g., 'spread', 'ladder')
        param_name: Parameter name
        value: Parameter value to validate
        strict: If True, raise ValueError on out-of-range. If False, clamp to range.

    Returns:
        Validated (and potentially clamped) value

    Raises:
        ValueError: If strict=True and value is out of range
    """
    ranges = PARAMETER_RANGES.get(section, {})
    if param_name not in ranges or value is None:
        return value

    min_val, max_val = ranges[param_name]
    float_value = float(value)

    if strict:
        if float_value < min_val or float_value > max_val:
            raise ValueError(
                f"Parameter {section}.{param_name} = {value} is out of range "
                f"[{min_val}, {max_val}]"
            )
        return value

    clamped = clamp_value(float_value, min_val, max_val)
    if isinstance(value, int) and not isinstance(value, bool) and clamped == int(clamped):
        return int(clamped)
    return clamped


def _check_bands(name: str, bands: Sequence[Sequence[float]], increasing: bool,
                 outside: float) -> List[str]:
    problems = []
    thresholds = [b[0] for b in bands]
    if thresholds != sorted(thresholds) or len(set(thresholds)) != len(thresholds):
        problems.append(f"spread.{name}: thresholds must be strictly ascending")
    mults = [b[1] for b in bands]
    ordered = sorted(mults) if increasing else sorted(mults, reverse=True)
    if mults != ordered:
        direction = "non-decreasing" if increasing else "non-increasing"
        problems.append(f"spread.{name}: multipliers must be {direction}")
    if mults:
        edge = mults[0] if increasing else mults[-1]
        if edge < outside:
            where = "first" if increasing else "last"
            problems.append(f"spread.{name}: {where} multiplier {edge} is below {outside}, "
                            f"the multiplier outside the bands")
    return problems


def validate_config(config: Dict[str, Any], strict: bool = False) -> Tuple[bool, List[str]]:
    """
    Validate all parameters in a configuration dictionary.

    Out-of-range values are clamped in place (or raise when strict).
    Multiplier bands must be ascending in threshold; skew and volatility
    multipliers must not decrease, volume multipliers must not increase, and
    no band may sit below the multiplier in force outside the table.

    Returns:
        Tuple of (is_valid, warnings_list)

    Raises:
        ValueError: If strict=True and any parameter is out of range or a
                    band table is malformed
    """
    warnings: List[str] = []

    for section_name, section_ranges in PARAMETER_RANGES.items():
        section_config = config.get(section_name)
        if not isinstance(section_config, dict):
            continue
        for param_name in section_ranges:
            if param_name not in section_config:
                continue
            original_value = section_config[param_name]
            validated_value = validate_parameter(section_name, param_name, original_value, strict=strict)
            if validated_value != original_value:
                section_config[param_name] = validated_value
                warnings.append(f"{section_name}.{param_name}: {original_value} -> {validated_value}")

    spread = config.get("spread") or {}
    problems: List[str] = []
    if "min_spread_bps" in spread and "max_spread_bps" in spread \
            and spread["min_spread_bps"] > spread["max_spread_bps"]:
        problems.append("spread.min_spread_bps exceeds spread.max_spread_bps")
    defaults = SpreadConfig()
    for name in BAND_FIELDS:
        outside_field = BAND_DEFAULTS[name]
        if name not in spread and (outside_field is None or outside_field not in spread):
            continue
        bands = spread.get(name, getattr(defaults, name))
        outside = 1.0 if outside_field is None else spread.get(outside_field, getattr(defaults, outside_field))
        problems.extend(_check_bands(name, bands, increasing=(name != "volume_bands"), outside=outside))
    if problems and strict:
        raise ValueError("; ".join(problems))
    warnings.extend(problems)

    return (len(warnings) == 0, warnings)


def config_from_dict(d: Dict[str, Any]) -> BotConfig:
    """Build a BotConfig from a parsed JSON document."""
    spread_d = dict(d.get("spread", {}))
    for name in BAND_FIELDS:
        if name in spread_d:
            spread_d[name] = [tuple(b) for b in spread_d[name]]
    return BotConfig(
        instrument=InstrumentConfig(**d["instrument"]),
        spread=SpreadConfig(**spread_d),
        inventory=InventoryConfig(**d.get("inventory", {})),
        quote=QuoteConfig(**d.get("quote", {})),
        risk=RiskConfig(**d.get("risk", {})),
        ladder=LadderConfig(**d.get("ladder", {})),
        logging=LoggingConfig(**d.get("logging", {})),
        log_path=d.get("log_path", "./data/logs/mm_events.jsonl"),
        state_dir=d.get("state_dir", "./data/state"),
    )


def load_config(path: str, strict: bool = False) -> BotConfig:
    """Load configuration from JSON file.

    Values are checked with validate_config first; warnings are printed and
    out-of-range values clamped unless `strict` is set.
    """
    with open(path, "r") as fp:
        d = json.load(fp)
    ok, warnings = validate_config(d, strict=strict)
    if not ok:
        for w in warnings:
            print(f"Warning: {w}")
    return config_from_dict(d)


def load_configs(path: str, strict: bool = False) -> List[BotConfig]:
    """Load one config, or several from a document with an `instruments` list.

    Shared top-level sections apply to every instrument unless the instrument
    entry overrides them.
    """
    with open(path, "r") as fp:
        d = json.load(fp)
    if "instruments" not in d:
        ok, warnings = validate_config(d, strict=strict)
        for w in warnings:
            print(f"Warning: {w}")
        return [config_from_dict(d)]
    shared = {k: v for k, v in d.items() if k != "instruments"}
    out = []
    for entry in d["instruments"]:
        merged = json.loads(json.dumps(shared))
        for k, v in entry.items():
            if isinstance(v, dict) and isinstance(merged.get(k), dict):
                merged[k].update(v)
            else:
                merged[k] = v
        ok, warnings = validate_config(merged, strict=strict)
        for w in warnings:
            print(f"Warning: {w}")
        out.append(config_from_dict(merged))
    return out
