# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Backend implementations for the external-sort benchmark.

Supported backends:
- duckdb: embedded, file-backed analytical engine
- postgres: PostgreSQL server reached through a DSN
- clickhouse: ClickHouse server reached over HTTP
"""

from .base import (
    BackendProtocol,
    BackendType,
    CommandBackend,
    get_backend_class,
    list_backends,
    register_backend,
)
from .clickhouse import ClickHouseBackend
from .duckdb import DuckDBBackend
from .postgres import PostgresBackend, split_memory_budget

__all__ = [
    # Base types
    "BackendProtocol",
    "BackendType",
    "CommandBackend",
    # Registry
    "register_backend",
    "get_backend_class",
    "list_backends",
    # Backends
    "DuckDBBackend",
    "PostgresBackend",
    "ClickHouseBackend",
    "split_memory_budget",
]
