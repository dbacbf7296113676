"""
Admin command line for the catalog API.

Usage:
    catalog-admin migrate [FILE]
    catalog-admin create-admin --username admin --password secret
    catalog-admin generate-jwt-secret
    catalog-admin check-db
    catalog-admin check-storage [--provider wasabi|r2|oracle]
    catalog-admin configure-cors --provider wasabi [--origin URL ...]
    catalog-admin migrate-storage --source wasabi --target r2 [--dry-run]
    catalog-admin serve
"""

import argparse
import json
import logging
import sys
from typing import Optional

import psycopg2

from services.catalog_api import config
from services.catalog_api.db import DatabaseConnection, server_time
from services.catalog_api.migrations import MigrationError, apply_migrations
from services.catalog_api.security import generate_secret, hash_password
from services.catalog_api.storage import (
    S3ObjectStore,
    StorageError,
    StorageNotConfiguredError,
    oracle_store,
    store_for,
)
from services.common.logging_utils import configure_service_logger, mask_dsn
from services.common.runtime_utils import build_http_client

log = logging.getLogger("catalog-admin")

MOVIE_FILE_FIELDS = ("poster_url", "movie_file_url")


def _open_db() -> DatabaseConnection:
    if not config.DATABASE_URL:
        raise SystemExit("DATABASE_URL environment variable is not set")
    return DatabaseConnection.open(config.DATABASE_URL)


def create_or_promote_admin(db: DatabaseConnection, username: str, password: str) -> str:
    """Create ``username`` as an admin, or promote and reset it if it exists."""
    hashed = hash_password(password)
    existing = db.fetch_one("SELECT id FROM users WHERE username = %s", (username,))
    if existing:
        db.execute(
            "UPDATE users SET is_admin = TRUE, password = %s, updated_at = CURRENT_TIMESTAMP "
            "WHERE username = %s",
            (hashed, username),
        )
        outcome = "updated"
    else:
        db.execute(
            "INSERT INTO users (username, password, is_admin) VALUES (%s, %s, TRUE)",
            (username, hashed),
        )
        outcome = "created"
    db.commit()
    return outcome


def migrate_movie_files(
    db: DatabaseConnection,
    source: S3ObjectStore,
    target: S3ObjectStore,
    dry_run: bool = False,
) -> list[dict]:
    """
    Copy movie posters and video files stored in ``source`` to ``target``
    under the same keys and point the movie rows at the new URLs.
    """
    movies = db.fetch_all(
        "SELECT id, title, poster_url, movie_file_url FROM movies "
        "WHERE poster_url IS NOT NULL OR movie_file_url IS NOT NULL ORDER BY created_at DESC"
    )
    results = []
    for movie in movies:
        for field in MOVIE_FILE_FIELDS:
            key = source.key_for_url(movie.get(field))
            if not key:
                continue
            entry = {"movie_id": movie["id"], "field": field, "key": key}
            if dry_run:
                entry["status"] = "pending"
                results.append(entry)
                continue
            try:
                body, content_type = source.get_bytes(key)
                new_url = target.put(key, body, content_type)
            except StorageError as e:
                log.error(f"Failed to migrate {field} of movie {movie['id']}: {e}")
                entry.update(status="failed", error=str(e))
                results.append(entry)
                continue
            db.execute(
                f"UPDATE movies SET {field} = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (new_url, movie["id"]),
            )
            db.commit()
            entry.update(status="migrated", url=new_url)
            results.append(entry)
            log.info(f"Migrated {field} of '{movie['title']}' to {target.name}")
    return results


# ════════════════════════════════════════════════════════════════════
# Commands
# ════════════════════════════════════════════════════════════════════

def cmd_migrate(args) -> int:
    db = _open_db()
    try:
        applied = apply_migrations(db, only=args.file)
    except MigrationError as e:
        log.error(str(e))
        return 1
    finally:
        db.close()
    print(f"Applied {len(applied)} migration(s): {', '.join(applied) or '-'}")
    return 0


def cmd_create_admin(args) -> int:
    db = _open_db()
    try:
        outcome = create_or_promote_admin(db, args.username, args.password)
    finally:
        db.close()
    print(f"Admin user {args.username} {outcome}")
    return 0


def cmd_generate_jwt_secret(args) -> int:
    print(f"JWT_SECRET={generate_secret()}")
    return 0


def cmd_check_db(args) -> int:
    print(f"Database URL: {mask_dsn(config.DATABASE_URL)}")
    try:
        db = _open_db()
    except psycopg2.Error as e:
        print(f"Connection failed: {str(e).strip()}")
        return 1
    try:
        print(f"Connected. Server time: {server_time(db)}")
    finally:
        db.close()
    return 0


def cmd_check_storage(args) -> int:
    if args.provider == "oracle":
        oracle = oracle_store()
        if oracle is None:
            print("ORACLE_MUSIC_BASE_URL not configured")
            return 1
        with build_http_client() as client:
            report = oracle.diagnose(client)
        print(json.dumps(report, indent=2))
        return 0 if report["diagnosis"] == "ok" else 1

    try:
        report = store_for(args.provider).check()
    except StorageNotConfiguredError as e:
        print(str(e))
        return 1
    print(json.dumps(report, indent=2))
    return 0 if report["ok"] else 1


def cmd_configure_cors(args) -> int:
    origins = args.origin or [*config.cors_origins(), config.DEV_FRONTEND_ORIGIN]
    try:
        rules = store_for(args.provider).put_cors(dict.fromkeys(origins))
    except (StorageNotConfiguredError, StorageError) as e:
        print(f"CORS update failed: {e}")
        return 1
    print(json.dumps(rules, indent=2))
    return 0


def cmd_migrate_storage(args) -> int:
    if args.source == args.target:
        print("Source and target must differ")
        return 1
    try:
        source, target = store_for(args.source), store_for(args.target)
    except StorageNotConfiguredError as e:
        print(str(e))
        return 1
    db = _open_db()
    try:
        results = migrate_movie_files(db, source, target, dry_run=args.dry_run)
    finally:
        db.close()
    print(json.dumps(results, indent=2))
    return 1 if any(r["status"] == "failed" for r in results) else 0


def cmd_serve(args) -> int:
    import uvicorn
    uvicorn.run("services.catalog_api.app:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catalog-admin", description="Streaming catalog admin tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("migrate", help="apply SQL migrations")
    p.add_argument("file", nargs="?", help="apply only this file from sql/")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("create-admin", help="create or promote an admin user")
    p.add_argument("--username", default="admin")
    p.add_argument("--password", required=True)
    p.set_defaults(func=cmd_create_admin)

    p = sub.add_parser("generate-jwt-secret", help="print a random JWT secret")
    p.set_defaults(func=cmd_generate_jwt_secret)

    p = sub.add_parser("check-db", help="verify the database connection")
    p.set_defaults(func=cmd_check_db)

    p = sub.add_parser("check-storage", help="verify object storage access")
    p.add_argument("--provider", choices=("wasabi", "r2", "oracle"), default=config.MOVIE_STORAGE_PROVIDER)
    p.set_defaults(func=cmd_check_storage)

    p = sub.add_parser("configure-cors", help="allow frontend origins to play stored media")
    p.add_argument("--provider", choices=("wasabi", "r2"), default=config.MOVIE_STORAGE_PROVIDER)
    p.add_argument("--origin", action="append", help="allowed origin (repeatable)")
    p.set_defaults(func=cmd_configure_cors)

    p = sub.add_parser("migrate-storage", help="copy movie files between providers")
    p.add_argument("--source", choices=("wasabi", "r2"), default="wasabi")
    p.add_argument("--target", choices=("wasabi", "r2"), default="r2")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_migrate_storage)

    p = sub.add_parser("serve", help="run the API with uvicorn")
    p.add_argument("--host", default=config.HOST)
    p.add_argument("--port", type=int, default=config.PORT)
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    configure_service_logger("catalog-admin")
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
