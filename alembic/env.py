"""
Alembic environment: migrations run against the configured DATABASE_URL
"""
from alembic import context

from cms_regen.config import config as app_config
from cms_regen.db import Base, engine

target_metadata = Base.metadata


def run_migrations_offline():
    context.configure(
        url=app_config.get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
