"""
Config loader: YAML file -> frozen dataclass tree.

The alert webhook URL may come from the PAPERTRADE_WEBHOOK_URL environment
variable instead of the file, so the URL (which often embeds a token) need not
be committed. Money values are read as Decimal.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml

WEBHOOK_ENV_VAR = "PAPERTRADE_WEBHOOK_URL"


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "data/papertrade.db"


@dataclass(frozen=True)
class TradingConfig:
    commission_discount: Decimal = Decimal("0.6")
    duplicate_window_seconds: float = 5.0
    max_trade_amount: Decimal = Decimal("0")  # 0 disables the per-order cap


@dataclass(frozen=True)
class MarketConfig:
    calendar_path: str = ""  # empty: bundled default calendar
    extra_holidays_path: str = ""


@dataclass(frozen=True)
class AuditConfig:
    path: str = "data/audit.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: float = 5.0


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig = DatabaseConfig()
    trading: TradingConfig = TradingConfig()
    market: MarketConfig = MarketConfig()
    audit: AuditConfig = AuditConfig()
    alerting: AlertingConfig = AlertingConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def _decimal(value: object, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Config value {key} must be a number, got {value!r}") from exc


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    Every section is optional; missing keys take the dataclass defaults.
    PAPERTRADE_WEBHOOK_URL, when set, overrides ``alerting.webhook_url``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    db_raw = raw.get("database") or {}
    db_cfg = DatabaseConfig(path=str(db_raw.get("path", DatabaseConfig.path)))

    t_raw = raw.get("trading") or {}
    t_cfg = TradingConfig(
        commission_discount=_decimal(t_raw.get("commission_discount", "0.6"), "trading.commission_discount"),
        duplicate_window_seconds=float(t_raw.get("duplicate_window_seconds", 5)),
        max_trade_amount=_decimal(t_raw.get("max_trade_amount", 0) or 0, "trading.max_trade_amount"),
    )
    if t_cfg.duplicate_window_seconds < 0:
        raise ValueError("trading.duplicate_window_seconds must not be negative")
    if t_cfg.max_trade_amount < 0:
        raise ValueError("trading.max_trade_amount must not be negative")

    m_raw = raw.get("market") or {}
    m_cfg = MarketConfig(
        calendar_path=str(m_raw.get("calendar_path", "") or ""),
        extra_holidays_path=str(m_raw.get("extra_holidays_path", "") or ""),
    )

    au_raw = raw.get("audit") or {}
    au_cfg = AuditConfig(
        path=str(au_raw.get("path", AuditConfig.path)),
        echo_stdout=bool(au_raw.get("echo_stdout", False)),
    )

    a_raw = raw.get("alerting") or {}
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=os.environ.get(WEBHOOK_ENV_VAR) or str(a_raw.get("webhook_url", "") or ""),
    )

    s_raw = raw.get("scheduler") or {}
    s_cfg = SchedulerConfig(interval_seconds=float(s_raw.get("interval_seconds", 5.0)))
    if s_cfg.interval_seconds <= 0:
        raise ValueError("scheduler.interval_seconds must be positive")

    return AppConfig(
        database=db_cfg,
        trading=t_cfg,
        market=m_cfg,
        audit=au_cfg,
        alerting=a_cfg,
        scheduler=s_cfg,
    )
