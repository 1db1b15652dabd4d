"""Configurable table names, validated and quoted with psycopg.sql."""

from __future__ import annotations

import re

from psycopg import sql

from vppadmin.config.env import read_env


_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_]+$")


class InvalidIdentifierError(ValueError):
    pass


def quote_identifier(value: str, kind: str = "identifier") -> sql.Identifier:
    """Quote a possibly schema-qualified name like `catalog.products`."""
    parts = [part.strip() for part in (value or "").split(".") if part.strip()]
    if not parts:
        raise InvalidIdentifierError(f"Missing {kind} name: {value!r}")
    for part in parts:
        if not _SEGMENT_RE.match(part):
            raise InvalidIdentifierError(f"Invalid {kind} identifier segment: {part}")
    return sql.Identifier(*parts)


def products_table() -> sql.Identifier:
    return quote_identifier(read_env("DB_PRODUCTS_TABLE") or "products", "table")


def posts_table() -> sql.Identifier:
    return quote_identifier(read_env("DB_POSTS_TABLE") or "posts", "table")


def categories_table() -> sql.Identifier:
    return quote_identifier(read_env("DB_CATEGORIES_TABLE") or "categories", "table")
