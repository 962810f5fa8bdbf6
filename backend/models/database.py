"""
Database instance shared by all models.

Initialized against the Flask app in create_app() via db.init_app(app).
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def enum_check(column: str, values, name: str):
    """Build a CHECK constraint restricting a string column to a fixed vocabulary."""
    allowed = ", ".join(f"'{v}'" for v in values)
    return db.CheckConstraint(f"{column} IN ({allowed})", name=name)
