# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
ClickHouse backend.

Implements BackendProtocol for a ClickHouse server reached over its HTTP
interface. Probes and cache drops are plain HTTP queries.
"""

import logging
from dataclasses import field
from typing import ClassVar, Dict, List, Literal, Type

import requests
from marshmallow import Schema
from marshmallow_dataclass import dataclass

from sortctl.backends.base import CommandBackend, register_backend
from sortctl.core.schema import RunConfig

logger = logging.getLogger(__name__)

CLICKHOUSE_COMMAND_PREFIX = ["cargo", "run", "--release", "--bin", "{binary}", "--features", "db-clickhouse", "--"]

CACHE_DROP_STATEMENTS = (
    "SYSTEM DROP MARK CACHE",
    "SYSTEM DROP UNCOMPRESSED CACHE",
    "SYSTEM DROP COMPILED EXPRESSION CACHE",
)


@register_backend("clickhouse")
@dataclass(frozen=True)
class ClickHouseBackend(CommandBackend):
    """ClickHouse backend configuration - implements BackendProtocol.

    Example YAML:
        backend:
          type: clickhouse
          url: http://localhost:8123
          database: default
    """

    type: Literal["clickhouse"] = "clickhouse"
    url: str = "http://localhost:8123"
    database: str = "default"
    request_timeout_seconds: float = 10.0

    loader_binary: str = "load-clickhouse"
    sorter_binary: str = "sort-clickhouse"
    command_prefix: List[str] = field(default_factory=lambda: list(CLICKHOUSE_COMMAND_PREFIX))
    env: Dict[str, str] = field(default_factory=dict)

    Schema: ClassVar[Type[Schema]] = Schema

    def describe_target(self) -> str:
        return f"{self.url.rstrip('/')}/{self.database}"

    def _query(self, sql: str, params: Dict[str, str] | None = None) -> str:
        """POST one query to the HTTP interface and return the response body.

        Raises:
            requests.RequestException: On connection errors or a non-2xx status
        """
        response = requests.post(
            self.url.rstrip("/") + "/",
            params=params,
            data=sql.encode("utf-8"),
            timeout=self.request_timeout_seconds,
        )
        response.raise_for_status()
        return response.text.strip()

    def dataset_present(self, config: RunConfig) -> bool:
        try:
            count = self._query(
                "SELECT count() FROM system.tables WHERE database = {database:String} AND name = {table:String}",
                params={"param_database": self.database, "param_table": config.table},
            )
        except requests.RequestException as e:
            logger.debug("ClickHouse presence probe failed: %s", e)
            return False
        return count.isdigit() and int(count) > 0

    def build_load_args(self, config: RunConfig, threads: int) -> List[str]:
        return [
            "--format",
            config.format,
            "--input",
            config.input_file,
            "--url",
            self.url,
            "--database",
            self.database,
            "--table",
            config.table,
            "--threads",
            str(threads),
        ]

    def build_run_args(self, config: RunConfig) -> List[str]:
        args = [
            "--url",
            self.url,
            "--database",
            self.database,
            "--table",
            config.table,
            "--memory-limit",
            config.memory_limit,
            "--threads",
            config.threads,
        ]
        if config.output_path:
            args += ["--output", config.output_path]
        return args

    def invalidate_cache(self, config: RunConfig) -> None:
        for statement in CACHE_DROP_STATEMENTS:
            try:
                self._query(statement)
            except requests.RequestException as e:
                logger.debug("%s failed (ignored): %s", statement, e)
