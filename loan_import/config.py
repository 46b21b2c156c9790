"""Configuration management for loan-import."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from loan_import.exceptions import ConfigurationError

RENEWAL_POLICIES = ("skip", "standalone")


@dataclass
class KafkaConfig:
    """Kafka producer configuration."""

    bootstrap_servers: str = "localhost:9092"
    acks: str = "all"
    linger_ms: int = 5
    retries: int = 3
    topic: str = "loan-import.runs"
    outcomes_topic: str = "loan-import.outcomes"

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "linger.ms": self.linger_ms,
            "retries": self.retries,
        }


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "loans"
    user: str = "postgres"
    password: str = "postgres"

    @property
    def connection_string(self) -> str:
        """Get connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class OutputConfig:
    """Output configuration."""

    json_output_dir: Path = field(default_factory=lambda: Path("output"))
    pretty_json: bool = False


@dataclass(frozen=True)
class LoanTypeSpec:
    """A (weeks, rate) loan product that should exist before loans import."""

    name: str
    weeks: int
    rate: Decimal
    fees: tuple[Decimal, ...] = ()


STANDARD_LOAN_TYPES: tuple[LoanTypeSpec, ...] = (
    LoanTypeSpec(name="14 semanas / 40%", weeks=14, rate=Decimal("0.4")),
    LoanTypeSpec(name="10 semanas / 0%", weeks=10, rate=Decimal("0")),
    LoanTypeSpec(name="20 semanas / 10%", weeks=20, rate=Decimal("0.1")),
)

FALLBACK_LOAN_TYPE = LoanTypeSpec(name="10 semanas / 0%", weeks=10, rate=Decimal("0"))


@dataclass
class SheetSpec:
    """Logical sheet layout: name plus column-letter to field mapping."""

    name: str
    columns: dict[str, str]
    id_field: str
    date_fields: tuple[str, ...] = ()


def _loan_sheet() -> SheetSpec:
    return SheetSpec(
        name="CREDITOS_OTORGADOS",
        columns={
            "A": "id",
            "B": "full_name",
            "C": "gived_date",
            "D": "status",
            "E": "gived_amount",
            "F": "requested_amount",
            "G": "weeks",
            "H": "interest_rate",
            "I": "amount_to_pay",
            "J": "weekly_payment",
            "S": "lead_id",
            "AA": "finished_date",
            "AB": "aval_name",
            "AC": "aval_phone",
            "AD": "titular_phone",
            "AE": "previous_loan_id",
            "AP": "bad_debt_date",
        },
        id_field="id",
        date_fields=("gived_date", "finished_date", "bad_debt_date"),
    )


def _payment_sheet() -> SheetSpec:
    return SheetSpec(
        name="ABONOS",
        columns={"A": "loan_id", "C": "payment_date", "D": "amount", "E": "type", "F": "description"},
        id_field="loan_id",
        date_fields=("payment_date",),
    )


def _expense_sheet() -> SheetSpec:
    return SheetSpec(
        name="GASTOS",
        columns={
            "B": "full_name",
            "C": "date",
            "D": "amount",
            "E": "account_type",
            "K": "lead_id",
            "M": "description",
        },
        id_field="date",
        date_fields=("date",),
    )


def _payroll_sheet() -> SheetSpec:
    return SheetSpec(
        name="NOMINA",
        columns={
            "A": "full_name",
            "B": "date",
            "C": "amount",
            "D": "description",
            "E": "lead_id",
            "F": "account_type",
        },
        id_field="date",
        date_fields=("date",),
    )


def _lead_sheet() -> SheetSpec:
    return SheetSpec(
        name="LIDERES",
        columns={
            "A": "id",
            "B": "first_name",
            "C": "last_names",
            "M": "phone",
            "R": "active",
            "V": "route_name",
        },
        id_field="id",
    )


@dataclass
class WorkbookConfig:
    """Sheet layouts of a route workbook."""

    loans: SheetSpec = field(default_factory=_loan_sheet)
    payments: SheetSpec = field(default_factory=_payment_sheet)
    expenses: SheetSpec = field(default_factory=_expense_sheet)
    payroll: SheetSpec = field(default_factory=_payroll_sheet)
    leads: SheetSpec = field(default_factory=_lead_sheet)


@dataclass
class ImportConfig:
    """Behaviour of a single import run."""

    batch_size: int = 500
    concurrency: int = 20
    renewal_policy: str = "skip"
    seed_leads: bool = False
    expense_dedupe_before: date = date(2024, 6, 1)
    payroll_dedupe_before: date = date(2024, 1, 1)
    loan_types: tuple[LoanTypeSpec, ...] = STANDARD_LOAN_TYPES
    fallback_loan_type: LoanTypeSpec = FALLBACK_LOAN_TYPE

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be positive, got {self.concurrency}")
        if self.renewal_policy not in RENEWAL_POLICIES:
            raise ConfigurationError(
                f"renewal_policy must be one of {RENEWAL_POLICIES}, got {self.renewal_policy!r}"
            )


@dataclass
class ImporterConfig:
    """Main configuration for loan-import."""

    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    workbook: WorkbookConfig = field(default_factory=WorkbookConfig)
    run: ImportConfig = field(default_factory=ImportConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ImporterConfig":
        """Create config from environment variables."""
        import os

        postgres = PostgresConfig(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=_int_env("POSTGRES_PORT", "5432"),
            database=os.getenv("POSTGRES_DB", "loans"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", "postgres"),
        )

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            topic=os.getenv("KAFKA_TOPIC", "loan-import.runs"),
            outcomes_topic=os.getenv("KAFKA_OUTCOMES_TOPIC", "loan-import.outcomes"),
        )

        output = OutputConfig(
            json_output_dir=Path(os.getenv("OUTPUT_DIR", "output")),
            pretty_json=os.getenv("PRETTY_JSON", "false").lower() == "true",
        )

        run = ImportConfig(
            batch_size=_int_env("IMPORT_BATCH_SIZE", "500"),
            concurrency=_int_env("IMPORT_CONCURRENCY", "20"),
            renewal_policy=os.getenv("RENEWAL_POLICY", "skip").lower(),
            seed_leads=os.getenv("SEED_LEADS", "false").lower() == "true",
            expense_dedupe_before=_date_env("EXPENSE_DEDUPE_BEFORE", "2024-06-01"),
            payroll_dedupe_before=_date_env("PAYROLL_DEDUPE_BEFORE", "2024-01-01"),
        )

        return cls(
            postgres=postgres,
            kafka=kafka,
            output=output,
            run=run,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def _int_env(name: str, default: str) -> int:
    import os

    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _date_env(name: str, default: str) -> date:
    import os

    raw = os.getenv(name, default)
    try:
        return date.fromisoformat(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an ISO date, got {raw!r}") from e
