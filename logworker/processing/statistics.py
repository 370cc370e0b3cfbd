"""Folding parsed log records into per-job statistics."""

import re
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field

from logworker.processing.line_parser import LogRecord, is_ip_address

IPV4_TEXT_PATTERN = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b", re.ASCII)


class Statistics(BaseModel):
    """Aggregate counts for one log file.

    Dumped with ``by_alias=True`` this matches the ``log_stats`` columns.
    """

    model_config = ConfigDict(populate_by_name=True)

    total_entries: int = Field(default=0, alias="totalEntries")
    error_count: int = Field(default=0, alias="errorCount")
    keyword_matches: Dict[str, int] = Field(default_factory=dict, alias="keywordMatches")
    ip_addresses: Dict[str, int] = Field(default_factory=dict, alias="ipAddresses")
    processing_time_ms: int = Field(default=0, alias="processingTime")

    def to_columns(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def new_statistics(keywords: Iterable[str]) -> Statistics:
    """Empty statistics with every monitored keyword present at zero."""
    return Statistics(keyword_matches={k: 0 for k in keywords})


class StatisticsAccumulator:
    """Folds LogRecords into a Statistics instance.

    Keywords are compared case-insensitively against the message. IPv4
    addresses are collected from every string value in the structured
    payload and, separately, from the message text; an address present in
    both is counted twice.
    """

    def __init__(self, keywords: Iterable[str]):
        self.keywords: List[str] = [k.lower() for k in keywords]

    def new_statistics(self) -> Statistics:
        return new_statistics(self.keywords)

    def fold(self, record: LogRecord, stats: Statistics) -> None:
        stats.total_entries += 1

        if record.level.lower() == "error":
            stats.error_count += 1

        message = record.message.lower()
        for keyword in self.keywords:
            if keyword in message:
                stats.keyword_matches[keyword] = stats.keyword_matches.get(keyword, 0) + 1

        if record.structured_payload:
            _collect_payload_ips(record.structured_payload, stats.ip_addresses)

        for candidate in IPV4_TEXT_PATTERN.findall(record.message):
            if is_ip_address(candidate):
                stats.ip_addresses[candidate] = stats.ip_addresses.get(candidate, 0) + 1


def _collect_payload_ips(node: Any, counts: Dict[str, int]) -> None:
    if isinstance(node, dict):
        values = node.values()
    elif isinstance(node, list):
        values = node
    else:
        return

    for value in values:
        if isinstance(value, str):
            if is_ip_address(value):
                counts[value] = counts.get(value, 0) + 1
        elif isinstance(value, (dict, list)):
            _collect_payload_ips(value, counts)
