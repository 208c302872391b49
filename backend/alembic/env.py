"""Alembic environment; the URL comes from application settings"""

from alembic import context
from sqlalchemy import engine_from_config, pool

from memberbridge.config import settings
from memberbridge.core.database import Base

config = context.config

# configparser treats % as interpolation; quoted passwords may contain it
config.set_main_option("sqlalchemy.url", settings.get_database_url().replace("%", "%%"))

target_metadata = Base.metadata


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
