"""Launch a sample PostgreSQL container and register it as an asyncdb connection."""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from asyncdb import ConnectionRegistry, QueryDispatcher, gather
from asyncdb.config import CONFIG_FILE, ConnectionConfig, FacadeConfig, load_config, save_config
from examples.schema import Base

DEFAULT_CONTAINER = "asyncdb-sample-db"
DEFAULT_PORT = 5544
DEFAULT_PASSWORD = "asyncdb"
DEFAULT_DB = "asyncdb_demo"
DEFAULT_USER = "asyncdb"
DEFAULT_CONNECTION = "sample"
DOCKER_IMAGE = "postgres:16-alpine"
SCHEMA_IDENTIFIER = "examples.schema:Base"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"POSTGRES_PASSWORD={password}",
                "-e",
                f"POSTGRES_DB={database}",
                "-e",
                f"POSTGRES_USER={user}",
                "-p",
                f"{port}:5432",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, user)


def wait_for_start(name: str, user: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(["docker", "exec", name, "pg_isready", "-U", user], text=True)
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def dsn_for(port: int, database: str) -> str:
    return f"postgresql+asyncpg://localhost:{port}/{database}"


async def create_tables(connection: ConnectionConfig) -> None:
    engine = create_async_engine(dsn_for_credentials(connection))
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()


def dsn_for_credentials(connection: ConnectionConfig) -> str:
    url = make_url(str(connection.dsn)).set(username=connection.user, password=connection.password)
    return url.render_as_string(hide_password=False)


def seed_data(connection: ConnectionConfig) -> None:
    config = FacadeConfig().with_connection(connection)
    with ConnectionRegistry(config) as registry:
        dispatcher = QueryDispatcher(registry)
        if dispatcher.count("User", connection.name).result() > 0:
            print("Sample rows already present; skipping seed.")
            return
        users = gather(
            *(
                dispatcher.create("User", {"name": name, "email": f"{name.lower()}@example.com"}, connection.name)
                for name in ("Anna", "Ben", "Cara")
            )
        )
        gather(
            *(
                dispatcher.create("Post", {"uid": user["id"], "title": f"First post by {user['name']}"}, connection.name)
                for user in users
            )
        )
        print(f"Seeded {len(users)} users.")


def update_config(connection: ConnectionConfig) -> None:
    config = load_config()
    if connection.name in config.connections:
        print(f"Connection '{connection.name}' already present in config; leaving as-is.")
        return
    save_config(config.with_connection(connection))
    print(f"Added '{connection.name}' connection to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    parser.add_argument("--connection", default=DEFAULT_CONNECTION, help="Connection name to register")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    connection = ConnectionConfig(
        name=args.connection,
        schema_identifier=SCHEMA_IDENTIFIER,
        dsn=dsn_for(args.port, args.database),
        user=args.user,
        password=args.password,
    )
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    asyncio.run(create_tables(connection))
    seed_data(connection)
    update_config(connection)
    print(f"Sample database is ready. Use connection name '{connection.name}'.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
