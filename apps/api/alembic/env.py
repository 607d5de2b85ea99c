from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from bizflow.core.config import get_settings
from bizflow.core.database import Base
from bizflow.events import models as event_models  # noqa: F401
from bizflow.insights import models as insight_models  # noqa: F401
from bizflow.workflows import models as workflow_models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return get_settings().database_url


def _configure(**options) -> None:  # type: ignore[no-untyped-def]
    url = options.get("url") or str(options["connection"].engine.url)
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER constraints in place.
        render_as_batch=url.startswith("sqlite"),
        **options,
    )


def run_migrations_offline() -> None:
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
