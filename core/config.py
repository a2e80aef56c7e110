"""Pipeline configuration.

Account catalog, classification patterns and thresholds are immutable
configuration loaded once at startup and passed by reference into the
classification engine, journal builder and bridge.

Reads configuration from environment variables (after loading ``.env``):
- LEDGER_DATABASE_PATH: SQLite database file (default "ledger.db")
- LEDGER_ALLOW_SIMULATED_WRITES: Enable the simulated persistence tier (default true)
- LEDGER_CURRENCY: Default transaction currency (default "USD")
- LEDGER_DEFAULT_TAX_RATE: Default combined jurisdiction tax rate in percent (default 18)
- LEDGER_JOURNAL_NUMBER_RETRIES: Renumbering attempts on journal number conflict (default 5)
- LEDGER_MAX_DELIVERY_ATTEMPTS: Notification delivery attempts per subscriber (default 3)
- LEDGER_REVIEW_THRESHOLD: Confidence below which review is required (default 0.85)
- LEDGER_DISCOUNT_RISK_THRESHOLD_PCT: Discount share of subtotal flagged high risk (default 20)
- LEDGER_REFUND_APPROVAL_THRESHOLD: Refund amount above which approval is required (default 1000)
- LEDGER_LOG_LEVEL: Logging level name (default "INFO")
- LEDGER_JSON_LOGS: Emit JSON logs (default false)
- LEDGER_AUDIT_DIR: Directory for JSON audit files (optional)
"""

import logging
import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from core.errors import ConfigurationError
from core.models.ledger import AccountSlot


ENV_PREFIX = "LEDGER_"
REPO_ROOT = Path(__file__).resolve().parents[1]


# =============================================================================
# Account Catalog
# =============================================================================

def _slots(**entries: Tuple[str, str]) -> Mapping[str, AccountSlot]:
    return MappingProxyType({key: AccountSlot(code=code, name=name) for key, (code, name) in entries.items()})


def _normalize_key(value: Optional[str]) -> str:
    return (value or "").strip().lower().replace("-", "_").replace(" ", "_")


@dataclass(frozen=True)
class AccountCatalog:
    """Chart-of-accounts codes used by classification and journal building."""
    payment_accounts: Mapping[str, AccountSlot] = field(default_factory=lambda: _slots(
        cash=("1110000", "Cash in Hand"),
        credit_card=("1120000", "Credit Card Receivable"),
        debit_card=("1120001", "Debit Card Receivable"),
        upi=("1121000", "UPI Collections"),
        digital_wallet=("1122000", "Digital Wallet"),
    ))
    revenue_accounts: Mapping[str, AccountSlot] = field(default_factory=lambda: _slots(
        food=("4110000", "Food Sales"),
        beverage=("4120000", "Beverage Sales"),
        delivery=("4130000", "Delivery Revenue"),
        catering=("4150000", "Catering Revenue"),
        other=("4190000", "Other Revenue"),
    ))
    service_charge: AccountSlot = AccountSlot(code="4140000", name="Service Charges")
    discount: AccountSlot = AccountSlot(code="5110000", name="Sales Discounts")
    split_tax_a: AccountSlot = AccountSlot(code="2110001", name="CGST Payable")
    split_tax_b: AccountSlot = AccountSlot(code="2110002", name="SGST Payable")
    single_tax: AccountSlot = AccountSlot(code="2110003", name="IGST Payable")
    default_payment_method: str = "cash"
    default_revenue_category: str = "food"

    def payment_account(self, method: Optional[str]) -> AccountSlot:
        """Account debited for a payment method (unknown methods map to cash)."""
        key = _normalize_key(method)
        if key in self.payment_accounts:
            return self.payment_accounts[key]
        return self.payment_accounts[self.default_payment_method]

    def revenue_account(self, category: Optional[str]) -> AccountSlot:
        """Revenue account for an item category (unknown categories map to food)."""
        key = _normalize_key(category)
        if key in self.revenue_accounts:
            return self.revenue_accounts[key]
        return self.revenue_accounts[self.default_revenue_category]

    def revenue_category(self, category: Optional[str]) -> str:
        """Normalized revenue category key for an item category."""
        key = _normalize_key(category)
        return key if key in self.revenue_accounts else self.default_revenue_category


# =============================================================================
# Classification Settings
# =============================================================================

@dataclass(frozen=True)
class ClassificationPattern:
    """A known transaction pattern that lifts classification confidence."""
    description: str
    amount_min: Decimal
    amount_max: Decimal
    confidence: float
    hour_start: Optional[int] = None
    hour_end: Optional[int] = None
    payment_method: Optional[str] = None

    def matches(self, amount: Decimal, hour: int, payment_method: Optional[str] = None) -> bool:
        """True when amount, hour-of-day and (if restricted) tender fall inside the pattern."""
        if amount < self.amount_min or amount > self.amount_max:
            return False
        if self.hour_start is not None and hour < self.hour_start:
            return False
        if self.hour_end is not None and hour > self.hour_end:
            return False
        if self.payment_method is not None and _normalize_key(self.payment_method) != _normalize_key(payment_method):
            return False
        return True


DEFAULT_PATTERNS: Tuple[ClassificationPattern, ...] = (
    ClassificationPattern("Lunch hour regular order", Decimal("20"), Decimal("200"), 0.95, 11, 14),
    ClassificationPattern("Dinner order", Decimal("50"), Decimal("500"), 0.92, 18, 22),
    ClassificationPattern("Large group/catering order", Decimal("500"), Decimal("5000"), 0.88),
)


@dataclass(frozen=True)
class ClassificationSettings:
    """Scoring constants for the classification engine."""
    base_confidence: float = 0.85

    # Heuristic penalties
    large_amount_threshold: Decimal = Decimal("1000")
    large_amount_factor: float = 0.95
    large_cash_threshold: Decimal = Decimal("500")
    large_cash_factor: float = 0.90
    off_hours_factor: float = 0.85
    many_items_threshold: int = 20
    many_items_factor: float = 0.95
    discount_factor: float = 0.90

    # Risk assessment
    high_amount_risk_threshold: Decimal = Decimal("5000")
    discount_risk_threshold_pct: Decimal = Decimal("20")
    business_hours_start: int = 6
    business_hours_end: int = 23
    high_risk_factor: float = 0.85
    medium_risk_factor: float = 0.95

    # Outcome
    review_threshold: float = 0.85
    min_confidence: float = 0.60
    max_confidence: float = 0.99
    degraded_confidence: float = 0.60

    # Tax split: combined jurisdiction rate above this uses two split-tax accounts
    split_tax_threshold_pct: Decimal = Decimal("15")

    patterns: Tuple[ClassificationPattern, ...] = DEFAULT_PATTERNS


# =============================================================================
# Persistence Settings
# =============================================================================

@dataclass(frozen=True)
class PersistenceSettings:
    """Entity/metadata store settings."""
    database_path: str = str(REPO_ROOT / "ledger.db")
    allow_simulated_writes: bool = True


# =============================================================================
# Pipeline Config
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Top-level immutable configuration."""
    accounts: AccountCatalog = field(default_factory=AccountCatalog)
    classification: ClassificationSettings = field(default_factory=ClassificationSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    currency: str = "USD"
    default_tax_jurisdiction_rate: Decimal = Decimal("18.0")
    refund_approval_threshold: Decimal = Decimal("1000")
    journal_number_retries: int = 5
    max_delivery_attempts: int = 3
    log_level: str = "INFO"
    json_logs: bool = False
    audit_dir: Optional[str] = None

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def with_database(self, database_path: str, allow_simulated_writes: Optional[bool] = None) -> "PipelineConfig":
        """Copy of this config pointing at another database."""
        persistence = replace(self.persistence, database_path=str(database_path))
        if allow_simulated_writes is not None:
            persistence = replace(persistence, allow_simulated_writes=allow_simulated_writes)
        return replace(self, persistence=persistence)


# =============================================================================
# Environment Parsing
# =============================================================================

def _env(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from None
    if parsed < minimum:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {parsed}")
    return parsed


def _env_decimal(name: str, default: Decimal) -> Decimal:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from None
    if parsed < 0:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be non-negative, got {parsed}")
    return parsed


def _env_float(name: str, default: float, low: float = 0.0, high: float = 1.0) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from None
    if not low <= parsed <= high:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be between {low} and {high}, got {parsed}")
    return parsed


def default_config() -> PipelineConfig:
    """Built-in defaults, independent of the environment."""
    return PipelineConfig()


def load_config(env_file: Optional[Path] = None) -> PipelineConfig:
    """Load configuration from ``.env`` and ``LEDGER_*`` environment variables.

    Args:
        env_file: Optional explicit .env path (defaults to the repository root .env)

    Returns:
        Immutable PipelineConfig

    Raises:
        ConfigurationError: If any variable holds an invalid value
    """
    env_path = Path(env_file) if env_file else REPO_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    defaults = PipelineConfig()

    log_level = (_env("LOG_LEVEL") or defaults.log_level).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"{ENV_PREFIX}LOG_LEVEL is not a logging level: {log_level!r}")

    classification = replace(
        defaults.classification,
        review_threshold=_env_float("REVIEW_THRESHOLD", defaults.classification.review_threshold),
        discount_risk_threshold_pct=_env_decimal(
            "DISCOUNT_RISK_THRESHOLD_PCT", defaults.classification.discount_risk_threshold_pct
        ),
    )

    persistence = PersistenceSettings(
        database_path=_env("DATABASE_PATH") or defaults.persistence.database_path,
        allow_simulated_writes=_env_bool("ALLOW_SIMULATED_WRITES", defaults.persistence.allow_simulated_writes),
    )

    return PipelineConfig(
        accounts=defaults.accounts,
        classification=classification,
        persistence=persistence,
        currency=(_env("CURRENCY") or defaults.currency).upper(),
        default_tax_jurisdiction_rate=_env_decimal("DEFAULT_TAX_RATE", defaults.default_tax_jurisdiction_rate),
        refund_approval_threshold=_env_decimal("REFUND_APPROVAL_THRESHOLD", defaults.refund_approval_threshold),
        journal_number_retries=_env_int("JOURNAL_NUMBER_RETRIES", defaults.journal_number_retries, minimum=1),
        max_delivery_attempts=_env_int("MAX_DELIVERY_ATTEMPTS", defaults.max_delivery_attempts, minimum=1),
        log_level=log_level,
        json_logs=_env_bool("JSON_LOGS", defaults.json_logs),
        audit_dir=_env("AUDIT_DIR"),
    )
