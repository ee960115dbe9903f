from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "alphagroove.config.yaml"

EXIT_STRATEGY_NAMES = ("stopLoss", "profitTarget", "trailingStop", "maxHoldTime", "endOfDay")
DIRECTIONS = ("long", "short", "llm_decides")
SLIPPAGE_MODELS = ("percent", "fixed")

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ConfigError(ValueError):
    """Malformed or inconsistent configuration."""


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None or value == "" else value


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _load_dotenv_if_present(path: str = ".env") -> None:
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            os.environ.setdefault(k.strip(), v.strip().strip('"').strip("'"))


def _opt_float(block: Mapping[str, Any], key: str, where: str) -> float | None:
    value = block.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}.{key} must be a number, got {value!r}") from exc


def _float(block: Mapping[str, Any], key: str, default: float, where: str) -> float:
    value = _opt_float(block, key, where)
    return default if value is None else value


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    return value


def validate_hhmm(value: str, where: str) -> str:
    text = str(value).strip()
    if not _HHMM.match(text):
        raise ConfigError(f"{where} must be in HH:MM format, got {value!r}")
    return text


@dataclass(frozen=True)
class StopLossConfig:
    percent_from_entry: float = 1.0
    atr_multiplier: float | None = None
    use_llm_proposed_price: bool = False


@dataclass(frozen=True)
class ProfitTargetConfig:
    percent_from_entry: float = 2.0
    atr_multiplier: float | None = None
    use_llm_proposed_price: bool = False


@dataclass(frozen=True)
class TrailingStopConfig:
    activation_percent: float = 1.0
    trail_percent: float | None = 0.5
    activation_atr_multiplier: float | None = None
    trail_atr_multiplier: float | None = None


@dataclass(frozen=True)
class MaxHoldTimeConfig:
    minutes: int = 60


@dataclass(frozen=True)
class EndOfDayConfig:
    time: str = "16:00"


@dataclass(frozen=True)
class SlippageConfig:
    model: str = "percent"  # percent|fixed
    value: float = 0.05


@dataclass(frozen=True)
class ExitStrategiesConfig:
    enabled: tuple[str, ...] = ("maxHoldTime",)
    stop_loss: StopLossConfig = StopLossConfig()
    profit_target: ProfitTargetConfig = ProfitTargetConfig()
    trailing_stop: TrailingStopConfig = TrailingStopConfig()
    max_hold_time: MaxHoldTimeConfig = MaxHoldTimeConfig()
    end_of_day: EndOfDayConfig = EndOfDayConfig()
    slippage: SlippageConfig | None = SlippageConfig()
    regular_hours_only: bool = False

    def needs_atr(self) -> bool:
        """True when any enabled strategy can size its levels from ATR."""
        for name in self.enabled:
            if name == "stopLoss" and self.stop_loss.atr_multiplier is not None:
                return True
            if name == "profitTarget" and self.profit_target.atr_multiplier is not None:
                return True
            if name == "trailingStop" and (
                self.trailing_stop.activation_atr_multiplier is not None
                or self.trailing_stop.trail_atr_multiplier is not None
            ):
                return True
        return False


@dataclass(frozen=True)
class ChartConfig:
    generate: bool = False
    output_dir: str = "./charts"


@dataclass(frozen=True)
class AppConfig:
    ticker: str = "SPY"
    timeframe: str = "1min"
    direction: str = "long"
    date_from: str = "2010-01-01"
    date_to: str = "2025-12-31"
    entry_pattern: str = "quick-rise"
    pattern_options: dict[str, dict[str, Any]] = field(default_factory=dict)
    charts: ChartConfig = ChartConfig()
    exit_strategies: ExitStrategiesConfig = ExitStrategiesConfig()
    llm_screen: Any = None  # LLMScreenConfig; imported lazily to keep llm optional here
    max_concurrent_days: int = 1
    data_dir: str = "./data"
    debug: bool = False

    def options_for(self, pattern_name: str) -> dict[str, Any]:
        return dict(self.pattern_options.get(pattern_name, {}))


def _parse_exit_strategies(raw: Mapping[str, Any]) -> ExitStrategiesConfig:
    where = "exitStrategies"
    # Per-strategy blocks may sit directly under exitStrategies or under strategyOptions.
    options: dict[str, Any] = dict(raw)
    options.update(_mapping(raw.get("strategyOptions"), f"{where}.strategyOptions"))

    enabled_raw = raw.get("enabled", ["maxHoldTime"])
    if isinstance(enabled_raw, str):
        enabled_raw = [enabled_raw]
    enabled = tuple(str(name).strip() for name in enabled_raw or [])
    for name in enabled:
        if name not in EXIT_STRATEGY_NAMES:
            raise ConfigError(f"Unknown exit strategy: {name!r} (expected one of {', '.join(EXIT_STRATEGY_NAMES)})")

    sl = _mapping(options.get("stopLoss"), f"{where}.stopLoss")
    pt = _mapping(options.get("profitTarget"), f"{where}.profitTarget")
    ts = _mapping(options.get("trailingStop"), f"{where}.trailingStop")
    mht = _mapping(options.get("maxHoldTime"), f"{where}.maxHoldTime")
    eod = _mapping(options.get("endOfDay"), f"{where}.endOfDay")
    slip = options.get("slippage", {})

    minutes = mht.get("minutes", 60)
    try:
        minutes = int(minutes)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}.maxHoldTime.minutes must be an integer, got {minutes!r}") from exc
    if minutes <= 0:
        raise ConfigError(f"{where}.maxHoldTime.minutes must be positive, got {minutes}")

    slippage: SlippageConfig | None = None
    if slip is not None:
        slip = _mapping(slip, f"{where}.slippage")
        model = str(slip.get("model", "percent")).strip().lower()
        if model not in SLIPPAGE_MODELS:
            raise ConfigError(f"{where}.slippage.model must be percent or fixed, got {model!r}")
        slippage = SlippageConfig(model=model, value=_float(slip, "value", 0.05, f"{where}.slippage"))

    trail_pct = _opt_float(ts, "trailPercent", f"{where}.trailingStop")
    trail_atr = _opt_float(ts, "trailAtrMultiplier", f"{where}.trailingStop")
    if "trailPercent" not in ts and trail_atr is None:
        trail_pct = 0.5
    if trail_pct is None and trail_atr is None:
        raise ConfigError(f"{where}.trailingStop needs trailPercent or trailAtrMultiplier")

    return ExitStrategiesConfig(
        enabled=enabled,
        stop_loss=StopLossConfig(
            percent_from_entry=_float(sl, "percentFromEntry", 1.0, f"{where}.stopLoss"),
            atr_multiplier=_opt_float(sl, "atrMultiplier", f"{where}.stopLoss"),
            use_llm_proposed_price=bool(sl.get("useLlmProposedPrice", False)),
        ),
        profit_target=ProfitTargetConfig(
            percent_from_entry=_float(pt, "percentFromEntry", 2.0, f"{where}.profitTarget"),
            atr_multiplier=_opt_float(pt, "atrMultiplier", f"{where}.profitTarget"),
            use_llm_proposed_price=bool(pt.get("useLlmProposedPrice", False)),
        ),
        trailing_stop=TrailingStopConfig(
            activation_percent=_float(ts, "activationPercent", 1.0, f"{where}.trailingStop"),
            trail_percent=trail_pct,
            activation_atr_multiplier=_opt_float(ts, "activationAtrMultiplier", f"{where}.trailingStop"),
            trail_atr_multiplier=trail_atr,
        ),
        max_hold_time=MaxHoldTimeConfig(minutes=minutes),
        end_of_day=EndOfDayConfig(time=validate_hhmm(eod.get("time", "16:00"), f"{where}.endOfDay.time")),
        slippage=slippage,
        regular_hours_only=bool(options.get("regularHoursOnly", False)),
    )


def _merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = _merge_dicts(out[key], value)
        else:
            out[key] = value
    return out


def config_from_mapping(raw: Mapping[str, Any]) -> AppConfig:
    """Build an AppConfig from the parsed YAML document (camelCase keys)."""
    from alphagroove.llm.config import LLMScreenConfig

    raw = _mapping(raw, "config")
    default = _mapping(raw.get("default"), "default")
    date = _mapping(default.get("date"), "default.date")
    charts = _mapping(default.get("charts"), "default.charts")
    default_patterns = _mapping(default.get("patterns"), "default.patterns")
    patterns = _mapping(_mapping(raw.get("patterns"), "patterns").get("entry"), "patterns.entry")

    # Root-level exitStrategies wins over default.exitStrategies, key by key.
    exits_raw = _merge_dicts(
        _mapping(default.get("exitStrategies"), "default.exitStrategies"),
        _mapping(raw.get("exitStrategies"), "exitStrategies"),
    )

    cfg = AppConfig(
        ticker=str(default.get("ticker", "SPY")),
        timeframe=str(default.get("timeframe", "1min")),
        direction=str(default.get("direction", "long")),
        date_from=str(date.get("from", "2010-01-01")),
        date_to=str(date.get("to", "2025-12-31")),
        entry_pattern=str(default_patterns.get("entry", "quick-rise")),
        pattern_options={str(k): dict(_mapping(v, f"patterns.entry.{k}")) for k, v in patterns.items()},
        charts=ChartConfig(
            generate=bool(charts.get("generate", False)),
            output_dir=str(charts.get("outputDir", "./charts")),
        ),
        exit_strategies=_parse_exit_strategies(exits_raw),
        llm_screen=LLMScreenConfig.from_mapping(_mapping(raw.get("llmConfirmationScreen"), "llmConfirmationScreen")),
        max_concurrent_days=int(default.get("maxConcurrentDays", 1)),
        data_dir=str(default.get("dataDir", "./data")),
    )
    return validate_config(cfg)


def validate_config(cfg: AppConfig) -> AppConfig:
    if cfg.direction not in DIRECTIONS:
        raise ConfigError(f"direction must be one of {', '.join(DIRECTIONS)}, got {cfg.direction!r}")
    for label, value in (("from", cfg.date_from), ("to", cfg.date_to)):
        if not _DATE.match(value):
            raise ConfigError(f"date.{label} must be in YYYY-MM-DD format, got {value!r}")
    if cfg.date_from > cfg.date_to:
        raise ConfigError(f"date range is empty: {cfg.date_from} > {cfg.date_to}")
    if cfg.max_concurrent_days < 1:
        raise ConfigError(f"maxConcurrentDays must be >= 1, got {cfg.max_concurrent_days}")
    if cfg.direction == "llm_decides" and not (cfg.llm_screen is not None and cfg.llm_screen.enabled):
        raise ConfigError("direction 'llm_decides' requires llmConfirmationScreen.enabled: true")
    return cfg


def load_config(path: str | None = None) -> AppConfig:
    """
    Load configuration: defaults < YAML file < ALPHAGROOVE_* environment.

    A missing file is not an error (defaults are used); an unreadable or
    invalid one is.
    """
    config_path = path or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILENAME)
    raw: Mapping[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        logger.debug("Loaded config file %s", config_path)
    elif path:
        raise ConfigError(f"Config file not found: {path}")
    else:
        logger.info("Using default configuration (%s not found)", DEFAULT_CONFIG_FILENAME)
    return apply_env_overrides(config_from_mapping(raw))


def apply_env_overrides(cfg: AppConfig) -> AppConfig:
    return validate_config(
        replace(
            cfg,
            ticker=_get_env("ALPHAGROOVE_TICKER", cfg.ticker),
            timeframe=_get_env("ALPHAGROOVE_TIMEFRAME", cfg.timeframe),
            direction=_get_env("ALPHAGROOVE_DIRECTION", cfg.direction).strip().lower(),
            data_dir=_get_env("ALPHAGROOVE_DATA_DIR", cfg.data_dir),
            max_concurrent_days=_get_env_int("ALPHAGROOVE_MAX_CONCURRENT_DAYS", cfg.max_concurrent_days),
            charts=ChartConfig(
                generate=_get_env_bool("ALPHAGROOVE_GENERATE_CHARTS", cfg.charts.generate),
                output_dir=_get_env("ALPHAGROOVE_CHARTS_DIR", cfg.charts.output_dir),
            ),
        )
    )


def merge_cli_options(cfg: AppConfig, options: Mapping[str, Any]) -> AppConfig:
    """Apply CLI flags (None means 'not given') on top of a loaded config."""
    changes: dict[str, Any] = {}
    for key in ("ticker", "timeframe", "direction", "date_from", "date_to", "entry_pattern", "data_dir"):
        value = options.get(key)
        if value is not None:
            changes[key] = value
    if options.get("max_concurrent_days") is not None:
        changes["max_concurrent_days"] = int(options["max_concurrent_days"])
    if options.get("debug"):
        changes["debug"] = True
    if options.get("generate_charts") is not None or options.get("charts_dir") is not None:
        gen = options.get("generate_charts")
        changes["charts"] = ChartConfig(
            generate=cfg.charts.generate if gen is None else bool(gen),
            output_dir=options.get("charts_dir") or cfg.charts.output_dir,
        )
    pattern_overrides = options.get("pattern_options") or {}
    if pattern_overrides:
        merged = {k: dict(v) for k, v in cfg.pattern_options.items()}
        for pattern, opts in pattern_overrides.items():
            merged.setdefault(pattern, {}).update(opts)
        changes["pattern_options"] = merged
    return validate_config(replace(cfg, **changes))


DEFAULT_SYSTEM_PROMPT = (
    "You are an AI assistant that strictly follows user instructions for output format. "
    "You will be provided with a task and an example of the JSON output required. "
    "Respond ONLY with the valid JSON object described."
)


def default_config_document() -> dict[str, Any]:
    """The fully populated YAML document written by `init-config`."""
    from alphagroove.llm.config import LLMScreenConfig

    exits = {
        "enabled": ["maxHoldTime"],
        "maxHoldTime": {"minutes": 60},
        "stopLoss": {"percentFromEntry": 1.0},
        "profitTarget": {"percentFromEntry": 2.0},
        "trailingStop": {"activationPercent": 1.0, "trailPercent": 0.5},
        "endOfDay": {"time": "16:00"},
        "slippage": {"model": "percent", "value": 0.05},
        "regularHoursOnly": False,
    }
    llm = LLMScreenConfig().to_mapping()
    llm["systemPrompt"] = DEFAULT_SYSTEM_PROMPT
    return {
        "default": {
            "ticker": "SPY",
            "timeframe": "1min",
            "direction": "long",
            "date": {"from": "2020-01-01", "to": "2025-12-31"},
            "patterns": {"entry": "quick-rise"},
            "charts": {"generate": False, "outputDir": "./charts"},
            "maxConcurrentDays": 1,
            "dataDir": "./data",
        },
        "patterns": {
            "entry": {
                "quick-rise": {"rise-pct": 0.3, "within-minutes": 5},
                "quick-fall": {"fall-pct": 0.3, "within-minutes": 5},
                "fixed-time-entry": {"entry-time": "12:00"},
                "random-time-entry": {"start-time": "09:30", "end-time": "15:30"},
            }
        },
        "exitStrategies": exits,
        "llmConfirmationScreen": llm,
    }


def write_default_config(path: str | None = None) -> bool:
    """Write the default YAML config. Returns False if the file already exists."""
    config_path = path or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILENAME)
    if os.path.exists(config_path):
        return False
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(default_config_document(), f, sort_keys=False, width=100)
    logger.info("Created default configuration file: %s", config_path)
    return True
