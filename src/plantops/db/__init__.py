"""PlantOps database layer."""

from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.migrations import CURRENT_VERSION, MIGRATIONS, run_migrations
from plantops.db.repository import Repository
from plantops.db.vectors import (
    decode_embedding,
    encode_embedding,
    ensure_vec_table,
    model_to_slug,
    vec_table_name,
)

__all__ = [
    "CURRENT_VERSION",
    "DEFAULT_DB_PATH",
    "Database",
    "MIGRATIONS",
    "Repository",
    "decode_embedding",
    "encode_embedding",
    "ensure_vec_table",
    "model_to_slug",
    "run_migrations",
    "vec_table_name",
]
