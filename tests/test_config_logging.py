"""Tests for config and logging."""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from loan_import.config import (
    STANDARD_LOAN_TYPES,
    ImportConfig,
    ImporterConfig,
    KafkaConfig,
    OutputConfig,
    PostgresConfig,
    WorkbookConfig,
)
from loan_import.exceptions import ConfigurationError
from loan_import.logging import (
    STANDARD_FORMAT,
    JsonFormatter,
    RouteFilter,
    batch_context,
    get_logger,
    route_context,
    setup_logging,
)


class TestKafkaConfig:
    """Tests for KafkaConfig."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = KafkaConfig()

        assert config.bootstrap_servers == "localhost:9092"
        assert config.acks == "all"
        assert config.topic == "loan-import.runs"
        assert config.outcomes_topic == "loan-import.outcomes"

    def test_to_dict(self) -> None:
        """Test conversion to confluent-kafka config dict."""
        config = KafkaConfig(bootstrap_servers="kafka:9092", acks="1", linger_ms=10, retries=5)

        assert config.to_dict() == {
            "bootstrap.servers": "kafka:9092",
            "acks": "1",
            "linger.ms": 10,
            "retries": 5,
        }


class TestPostgresConfig:
    """Tests for PostgresConfig."""

    def test_connection_string(self) -> None:
        """Test connection string generation."""
        config = PostgresConfig(host="db", port=5433, database="loans", user="u", password="p")

        assert config.connection_string == "postgresql://u:p@db:5433/loans"


class TestImportConfig:
    """Tests for ImportConfig validation."""

    def test_defaults(self) -> None:
        """Defaults match the production run settings."""
        config = ImportConfig()

        assert config.batch_size == 500
        assert config.concurrency == 20
        assert config.renewal_policy == "skip"
        assert config.seed_leads is False
        assert config.expense_dedupe_before == date(2024, 6, 1)
        assert config.payroll_dedupe_before == date(2024, 1, 1)
        assert config.loan_types == STANDARD_LOAN_TYPES
        assert config.fallback_loan_type.weeks == 10
        assert config.fallback_loan_type.rate == Decimal("0")

    def test_standard_catalog(self) -> None:
        """The standard catalog holds 14w/40%, 10w/0% and 20w/10%."""
        assert [(t.weeks, t.rate) for t in STANDARD_LOAN_TYPES] == [
            (14, Decimal("0.4")),
            (10, Decimal("0")),
            (20, Decimal("0.1")),
        ]

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"concurrency": 0}, {"renewal_policy": "guess"}],
    )
    def test_invalid_values_raise(self, kwargs: dict) -> None:
        """Invalid values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ImportConfig(**kwargs)


class TestWorkbookConfig:
    """Tests for the default sheet layouts."""

    def test_sheet_names(self) -> None:
        config = WorkbookConfig()

        assert config.loans.name == "CREDITOS_OTORGADOS"
        assert config.payments.name == "ABONOS"
        assert config.expenses.name == "GASTOS"
        assert config.payroll.name == "NOMINA"
        assert config.leads.name == "LIDERES"

    def test_loan_columns(self) -> None:
        """Loan sheet columns follow the workbook letters."""
        columns = WorkbookConfig().loans.columns

        assert columns["A"] == "id"
        assert columns["S"] == "lead_id"
        assert columns["AE"] == "previous_loan_id"
        assert columns["AP"] == "bad_debt_date"


class TestImporterConfig:
    """Tests for ImporterConfig."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = ImporterConfig()

        assert isinstance(config.postgres, PostgresConfig)
        assert isinstance(config.kafka, KafkaConfig)
        assert isinstance(config.output, OutputConfig)
        assert config.log_level == "INFO"

    def test_from_env_defaults(self) -> None:
        """Test from_env with default values."""
        with patch.dict(os.environ, {}, clear=True):
            config = ImporterConfig.from_env()

        assert config.postgres.host == "localhost"
        assert config.postgres.database == "loans"
        assert config.run.batch_size == 500
        assert config.output.json_output_dir == Path("output")

    def test_from_env_custom(self) -> None:
        """Test from_env with custom environment variables."""
        env = {
            "POSTGRES_HOST": "db.example.com",
            "POSTGRES_PORT": "5433",
            "KAFKA_BOOTSTRAP_SERVERS": "kafka:9092",
            "KAFKA_TOPIC": "runs",
            "KAFKA_OUTCOMES_TOPIC": "rows",
            "OUTPUT_DIR": "/tmp/out",
            "PRETTY_JSON": "true",
            "IMPORT_BATCH_SIZE": "100",
            "IMPORT_CONCURRENCY": "5",
            "RENEWAL_POLICY": "STANDALONE",
            "SEED_LEADS": "true",
            "EXPENSE_DEDUPE_BEFORE": "2024-07-01",
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            config = ImporterConfig.from_env()

        assert config.postgres.host == "db.example.com"
        assert config.postgres.port == 5433
        assert config.kafka.bootstrap_servers == "kafka:9092"
        assert config.kafka.topic == "runs"
        assert config.kafka.outcomes_topic == "rows"
        assert config.output.pretty_json is True
        assert config.run.batch_size == 100
        assert config.run.concurrency == 5
        assert config.run.renewal_policy == "standalone"
        assert config.run.seed_leads is True
        assert config.run.expense_dedupe_before == date(2024, 7, 1)
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "env",
        [{"IMPORT_BATCH_SIZE": "many"}, {"PAYROLL_DEDUPE_BEFORE": "yesterday"}, {"RENEWAL_POLICY": "maybe"}],
    )
    def test_from_env_invalid(self, env: dict) -> None:
        """Malformed environment values raise ConfigurationError."""
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError):
                ImporterConfig.from_env()


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging_standard(self) -> None:
        """Standard setup installs one stdout handler at the requested level."""
        setup_logging(level="DEBUG", format_type="standard")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_logging_json(self) -> None:
        """JSON setup installs the JsonFormatter."""
        setup_logging(level="INFO", format_type="json")

        assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)

    def test_setup_logging_quiets_libraries(self) -> None:
        """Third-party loggers are raised to WARNING."""
        setup_logging(level="DEBUG")

        assert logging.getLogger("psycopg").level == logging.WARNING
        assert logging.getLogger("confluent_kafka").level == logging.WARNING

    def test_json_formatter_includes_route_and_batch(self) -> None:
        """Records logged inside a route and batch carry both."""
        record = logging.LogRecord("loan_import.engine", logging.ERROR, __file__, 1, "batch %d failed", (3,), None)

        with route_context("RUTA1"), batch_context(3):
            data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "batch 3 failed"
        assert data["level"] == "ERROR"
        assert data["route"] == "RUTA1"
        assert data["batch"] == 3

    def test_json_formatter_outside_route(self) -> None:
        record = logging.LogRecord("loan_import", logging.INFO, __file__, 1, "ready", (), None)

        data = json.loads(JsonFormatter().format(record))

        assert "route" not in data
        assert "batch" not in data

    def test_route_filter_sets_where(self) -> None:
        """The standard format shows ``route#batch``, the route alone, or a dash."""
        route_filter = RouteFilter()
        records = [logging.LogRecord("loan_import", logging.INFO, __file__, 1, "m", (), None) for _ in range(3)]

        route_filter.filter(records[0])
        with route_context("RUTA2"):
            route_filter.filter(records[1])
            with batch_context(4):
                route_filter.filter(records[2])

        assert [r.where for r in records] == ["-", "RUTA2", "RUTA2#4"]
        assert records[2].batch == 4
        assert "RUTA2#4 | loan_import | m" in logging.Formatter(STANDARD_FORMAT).format(records[2])

    def test_setup_logging_installs_route_filter(self) -> None:
        setup_logging(level="INFO")

        assert any(isinstance(f, RouteFilter) for f in logging.getLogger().handlers[0].filters)

    def test_json_formatter_exception(self) -> None:
        """Exception info is rendered."""
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]

    def test_get_logger(self) -> None:
        assert get_logger("loan_import.test").name == "loan_import.test"
