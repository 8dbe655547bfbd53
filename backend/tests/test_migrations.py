"""
Schema migrations.

Runs the real Alembic environment against a file database, the same path
`flask db upgrade` takes.
"""

import os

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from flask_migrate import upgrade
from sqlalchemy import inspect

from compliance import create_app
from compliance.extensions import db


MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def test_upgrade_builds_the_model_schema(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'upgrade.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        upgrade(directory=MIGRATIONS_DIR)

        tables = set(inspect(db.engine).get_table_names())
        assert set(db.metadata.tables) <= tables
        assert "alembic_version" in tables

        with db.engine.connect() as conn:
            diffs = compare_metadata(MigrationContext.configure(conn), db.metadata)
        assert diffs == []
