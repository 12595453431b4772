"""Render and apply the SQL installer for DDL capture and publication admission."""

from __future__ import annotations

import logging
from importlib.resources import files
from string import Template

from .cdc.ddl import ColumnarNaming
from .cdc.encoding import quote_identifier, quote_literal
from .config import Settings
from .db import Connection

logger = logging.getLogger(__name__)

SQL_PACKAGE = "rowcol_sync.sql"
INSTALL_SCRIPT = "install.sql"

CREATE_SLOT_SQL = """
    SELECT pg_create_logical_replication_slot(%s, 'pgoutput')
     WHERE NOT EXISTS (
           SELECT 1 FROM pg_replication_slots WHERE slot_name = %s)
"""


class _SqlTemplate(Template):
    delimiter = "@"


def _relay_table(settings: Settings) -> str:
    table = quote_identifier(settings.relay_relation)
    if settings.relay_namespace:
        return f"{quote_identifier(settings.relay_namespace)}.{table}"
    return table


def render_install_sql(settings: Settings) -> str:
    """Render the packaged installer for the configured names."""
    naming = ColumnarNaming(
        suffix=settings.columnar_suffix,
        access_method=settings.columnar_access_method,
    )
    template = _SqlTemplate(
        files(SQL_PACKAGE).joinpath(INSTALL_SCRIPT).read_text(encoding="utf-8")
    )
    relay_table = _relay_table(settings)
    return template.substitute(
        publication=quote_identifier(settings.cdc_publication),
        publication_literal=quote_literal(settings.cdc_publication),
        relay_table=relay_table,
        relay_table_literal=quote_literal(relay_table),
        relay_name_literal=quote_literal(settings.relay_relation),
        suffix_literal=quote_literal(naming.suffix),
        access_method_literal=quote_literal(naming.access_method),
    )


def install(
    conn: Connection,
    settings: Settings,
    *,
    create_slot: bool = False,
    dry_run: bool = False,
) -> str:
    """Apply the installer in one transaction, optionally creating the slot.

    The slot is created afterwards in autocommit mode because PostgreSQL
    refuses to create a logical slot inside a transaction that has written.
    """
    script = render_install_sql(settings)
    if dry_run:
        return script

    conn.autocommit = False
    with conn.transaction():
        conn.execute(script)
    logger.info(
        "installed DDL capture for publication %s (relay %s)",
        settings.cdc_publication,
        settings.relay_relation,
    )

    if create_slot:
        conn.autocommit = True
        conn.execute(CREATE_SLOT_SQL, (settings.cdc_slot, settings.cdc_slot))
        logger.info("ensured logical replication slot %s", settings.cdc_slot)
    return script


__all__ = ["CREATE_SLOT_SQL", "install", "render_install_sql"]
