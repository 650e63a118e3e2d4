"""Utilities for building a TableCatalog from external sources.

SQLAlchemy converter
--------------------
:func:`catalog_from_sqlalchemy` reflects a live database engine and returns a
:class:`~shieldql.schema.catalog.TableCatalog`.

Install the optional dependency before using this module::

    pip install "shieldql[sqlalchemy]"

Example::

    from sqlalchemy import create_engine
    from shieldql.schema.converters import catalog_from_sqlalchemy

    engine = create_engine("sqlite:///mydb.db")
    catalog = catalog_from_sqlalchemy(engine)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shieldql.schema.catalog import ColumnInfo, TableCatalog, TableInfo

if TYPE_CHECKING:
    from sqlalchemy import Engine, MetaData


def catalog_from_sqlalchemy(
    engine: Engine,
    *,
    include_tables: list[str] | None = None,
    schema: str | None = None,
) -> TableCatalog:
    """Build a :class:`TableCatalog` by reflecting a SQLAlchemy engine.

    Args:
        engine: A :class:`sqlalchemy.engine.Engine` instance.
        include_tables: Optional allowlist of table names to reflect.
            When ``None`` all tables in the schema are reflected.
        schema: Optional database schema name (e.g. ``"public"`` for
            PostgreSQL), passed to :meth:`sqlalchemy.schema.MetaData.reflect`.

    Returns:
        A populated :class:`TableCatalog`.

    Raises:
        ImportError: If ``sqlalchemy`` is not installed.
    """
    try:
        from sqlalchemy import MetaData as _MetaData
    except ImportError as exc:
        raise ImportError(
            "SQLAlchemy is required for catalog_from_sqlalchemy(). "
            'Install it with: pip install "shieldql[sqlalchemy]"'
        ) from exc

    metadata = _MetaData()
    with engine.connect() as conn:
        metadata.reflect(bind=conn, only=include_tables, schema=schema)
    return catalog_from_metadata(metadata)


def catalog_from_metadata(metadata: MetaData) -> TableCatalog:
    """Convert a :class:`~sqlalchemy.schema.MetaData` into a :class:`TableCatalog`.

    Works on reflected metadata as well as on metadata declared in code
    (e.g. ``Base.metadata`` of a declarative model set).
    """
    return TableCatalog(
        tables=[
            TableInfo(
                name=table.name,
                columns=[
                    ColumnInfo(
                        name=col.name,
                        type=str(col.type),
                        # reflected columns may leave nullable unset
                        nullable=col.nullable is not False,
                    )
                    for col in table.columns
                ],
            )
            for table in metadata.sorted_tables
        ]
    )
