from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    debug: bool = False
    project_name: str = "DrayMaster Automation Engine"
    environment: str = "development"

    database_url: str  # Required - no default, must be set in .env

    # Scheduler
    enable_scheduler: bool = True
    demurrage_reevaluation_interval_minutes: int = 15
    outbox_relay_interval_minutes: int = 5
    outbox_relay_delay_seconds: int = 60

    # Lock contention retry policy
    lock_retry_attempts: int = 3
    lock_retry_backoff_seconds: float = 0.05

    # Billing defaults (used when no lane rate row matches)
    default_line_haul_rate: Decimal = Decimal("350.00")
    fuel_surcharge_percent: Decimal = Decimal("0.08")
    hazmat_surcharge: Decimal = Decimal("75.00")
    overweight_surcharge: Decimal = Decimal("100.00")
    overweight_threshold_lbs: int = 44000
    reefer_surcharge: Decimal = Decimal("50.00")
    invoice_due_days: int = 30
    invoice_number_format: str = "INV-{YEAR}{MONTH}{DAY}-{NUMBER:04}"

    # Demurrage defaults (used when the carrier has no free time rule)
    default_free_days: int = 5
    default_demurrage_rate: Decimal = Decimal("75.00")
    demurrage_warning_percent: int = 80
    demurrage_critical_percent: int = 90

    # Chassis per diem defaults (used when the pool is unknown)
    default_chassis_pool: str = "DCLI"
    default_chassis_free_days: int = 4
    default_chassis_daily_rate: Decimal = Decimal("30.00")

    # Driver pay defaults
    default_base_pay: Decimal = Decimal("100.00")
    waiting_free_minutes: int = 120
    default_waiting_rate_per_hour: Decimal = Decimal("25.00")
    settlement_number_format: str = "STL-{YEAR}{MONTH}{DAY}-{NUMBER:04}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
