from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from crm_billing.billing import models as billing_models  # noqa: F401
from crm_billing.core.config import get_settings
from crm_billing.core.database import Base
from crm_billing.customers import models as customer_models  # noqa: F401
from crm_billing.messaging import models as messaging_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DATABASE_URL (via Settings) wins over alembic.ini.
config.set_main_option("sqlalchemy.url", get_settings().database_url.replace("%", "%%"))
target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
