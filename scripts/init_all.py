"""Initialize the shared store for chatgenius clients.

This script:
1. Verifies connectivity to PostgreSQL and Redis
2. Runs all Alembic migrations
3. Makes sure the general channel exists

Run this once against a fresh database before starting any client.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))


def print_header(title: str) -> None:
    """Print a formatted header."""
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}\n")


def print_success(message: str) -> None:
    """Print a success message."""
    print(f"✅ {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    print(f"❌ {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    print(f"ℹ️  {message}")


async def check_postgres() -> None:
    """Check PostgreSQL connectivity and database info."""
    print_header("Checking PostgreSQL Connection")

    from sqlalchemy import text

    from chatgenius.core.config import get_settings
    from chatgenius.core.database import create_engine_from_settings

    engine = create_engine_from_settings(get_settings())
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            print_success("PostgreSQL connection successful")

            version = (await conn.execute(text("SELECT version()"))).scalar()
            if version:
                print_info(f"PostgreSQL version: {version.split(',')[0]}")

            db_name = (await conn.execute(text("SELECT current_database()"))).scalar()
            print_info(f"Database: {db_name}")
    except Exception as e:
        print_error(f"PostgreSQL connection failed: {e}")
        print_info("Check DATABASE_URL in your .env file")
        raise
    finally:
        await engine.dispose()


async def check_redis() -> None:
    """Check Redis connectivity and that the change feed can publish."""
    print_header("Checking Redis Connection")

    import redis.asyncio as aioredis

    from chatgenius.core.redis import close_redis_pool, get_change_channel, get_redis_pool

    try:
        async with aioredis.Redis(connection_pool=get_redis_pool()) as client:
            await client.ping()
            print_success("Redis connection successful")

            info = await client.info("server")
            print_info(f"Redis version: {info.get('redis_version', 'unknown')}")

            receivers = await client.publish(get_change_channel("init"), "{}")
            print_success(f"Change feed publish working ({receivers} listener(s))")
    except Exception as e:
        print_error(f"Redis connection failed: {e}")
        print_info("Check REDIS_URL in your .env file")
        raise
    finally:
        await close_redis_pool()


def run_migrations() -> None:
    """Run Alembic migrations to upgrade the database schema."""
    print_header("Running Database Migrations")
    import subprocess

    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=Path(__file__).parent.parent,
        capture_output=True,
        text=True,
    )

    if result.returncode != 0:
        print_error("Database migrations failed")
        if result.stderr:
            print(result.stderr)
        raise RuntimeError("Migration failed")

    print_success("Database migrations completed successfully")
    for line in result.stdout.split("\n"):
        if line.strip():
            print(f"   {line}")


async def ensure_general_channel() -> None:
    """Create the general channel if the seed row is missing."""
    print_header("Checking General Channel")

    from chatgenius.core.config import get_settings
    from chatgenius.core.exceptions import StorageError
    from chatgenius.models.channel import GENERAL_CHANNEL_ID, GENERAL_CHANNEL_NAME, ChannelType
    from chatgenius.services.store_gateway import StoreGateway

    gateway = StoreGateway.from_settings(get_settings())
    try:
        await gateway.select_one("channels", {"id": GENERAL_CHANNEL_ID})
        print_success(f"#{GENERAL_CHANNEL_NAME} already exists")
    except StorageError as e:
        if not e.is_not_found:
            raise
        await gateway.insert(
            "channels",
            {
                "id": GENERAL_CHANNEL_ID,
                "name": GENERAL_CHANNEL_NAME,
                "description": "General discussion",
                "type": ChannelType.PUBLIC.value,
            },
        )
        print_success(f"#{GENERAL_CHANNEL_NAME} created")
    finally:
        await gateway.close()


async def main() -> None:
    """Run all initialization steps."""
    print("\n" + "=" * 60)
    print("  🚀 chatgenius Store Initialization")
    print("=" * 60)

    try:
        print_info("Phase 1: Validating infrastructure connectivity...")
        await check_postgres()
        await check_redis()

        print_info("Phase 2: Applying database schema...")
        run_migrations()
        await ensure_general_channel()

        print_header("✅ Initialization Complete!")
        print("🚀 Next Steps:")
        print("  Start a client:")
        print("     python main.py --name Ava")
        print()

    except Exception as e:
        print(f"\n❌ Initialization failed: {e}")
        print("\n💡 Troubleshooting:")
        print("  • Check .env has DATABASE_URL and REDIS_URL")
        print("  • Ensure PostgreSQL and Redis are reachable")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
