"""Output sinks for run summaries."""

from loan_import.sinks.console import ConsoleSink
from loan_import.sinks.json_file import JsonFileSink
from loan_import.sinks.kafka import KafkaSink

__all__ = ["ConsoleSink", "JsonFileSink", "KafkaSink"]
