"""Admin CLI for the DueSync notification services."""

from __future__ import annotations

import asyncio
import json

import click

JOB_NAMES = ("push-reminders", "generate-recurring", "send-notifications")


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


@click.group()
def cli():
    """DueSync coordination and notification administration CLI."""
    pass


# --- Setup ---


@cli.command()
def setup():
    """Create database tables if they do not exist."""
    click.echo("Creating database tables...")
    run_async(_create_tables())
    click.echo("Setup complete.")


async def _create_tables():
    from shared.database import get_engine
    from shared.models import Base

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


# --- Service ---


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
@click.option(
    "--local-store",
    is_flag=True,
    help="Use an in-process store instead of Redis. Single-process development only: "
    "locks and rate limits are NOT shared between instances.",
)
def serve(host, port, local_store):
    """Run the notifier service."""
    import uvicorn

    from modules.notifier.main import app, install_store
    from shared.store import LocalDevStore

    if local_store:
        if host not in ("127.0.0.1", "localhost"):
            raise click.UsageError("--local-store may only be used when binding to localhost")
        click.echo("Warning: using the in-process store; run a single instance only.")
        install_store(app, LocalDevStore())

    uvicorn.run(app, host=host, port=port)


# --- Jobs ---


@cli.group()
def jobs():
    """Run cron jobs by hand."""
    pass


@jobs.command("run")
@click.argument("name", type=click.Choice(JOB_NAMES))
def run_job(name):
    """Run one job in this process, under the same distributed lock as the cron trigger."""
    run_async(_run_job(name))


async def _run_job(name):
    from modules.notifier.digests import run_send_digests
    from modules.notifier.dispatcher import run_push_reminders
    from modules.notifier.recurring import run_generate_recurring
    from modules.notifier.senders import RedisPushSender, ResendDigestSender
    from shared.config import get_settings
    from shared.database import get_engine, get_session_factory
    from shared.locks import LockManager
    from shared.redis import close_redis, get_redis
    from shared.store import create_store

    settings = get_settings()
    session_factory = get_session_factory()
    locks = LockManager(await create_store())

    try:
        if name == "push-reminders":
            sender = RedisPushSender(session_factory, await get_redis(), channel=settings.push_channel)
            outcome = await run_push_reminders(locks, session_factory, sender, settings)
        elif name == "generate-recurring":
            outcome = await run_generate_recurring(locks, session_factory, settings)
        else:
            sender = ResendDigestSender(session_factory, settings)
            outcome = await run_send_digests(locks, session_factory, sender, settings)

        if outcome.skipped:
            click.echo(f"Skipped {name}: {outcome.reason}")
        else:
            click.echo(json.dumps(outcome.summary.to_json_dict(), indent=2))
    finally:
        await close_redis()
        await get_engine().dispose()


# --- Locks ---


@cli.group()
def locks():
    """Distributed lock inspection."""
    pass


@locks.command("status")
@click.argument("name")
def lock_status(name):
    """Show whether a lock is held and for how long."""
    run_async(_lock_status(name))


async def _lock_status(name):
    from shared.locks import LockManager
    from shared.redis import close_redis
    from shared.store import create_store

    manager = LockManager(await create_store())
    try:
        held = await manager.is_locked(name)
        ttl = await manager.lock_ttl(name)
    finally:
        await close_redis()

    if held is None:
        click.echo(f"{name}: unknown (store unreachable)")
    elif held:
        click.echo(f"{name}: held, expires in {ttl}s")
    else:
        click.echo(f"{name}: free")


@locks.command("release")
@click.argument("name")
@click.confirmation_option(prompt="Force-releasing can let two instances run the same job. Continue?")
def lock_release(name):
    """Force-release a lock regardless of owner."""
    run_async(_lock_release(name))


async def _lock_release(name):
    from shared.locks import LockManager
    from shared.redis import close_redis
    from shared.store import create_store

    manager = LockManager(await create_store())
    try:
        await manager.force_release(name)
    finally:
        await close_redis()
    click.echo(f"Released {name}")


# --- Rate limits ---


@cli.group()
def ratelimit():
    """Rate limit counters."""
    pass


@ratelimit.command("status")
@click.argument("identifier")
@click.option("--route", default="default", help="Route tag (request path)")
@click.option("--policy", default="api", help="Policy name (api, auth, push, email, calendar)")
def ratelimit_status(identifier, route, policy):
    """Show a counter without counting a request."""
    run_async(_ratelimit_status(identifier, route, policy))


async def _ratelimit_status(identifier, route, policy):
    from shared.rate_limit import RATE_LIMITS, RateLimiter
    from shared.redis import close_redis
    from shared.store import create_store

    if policy not in RATE_LIMITS:
        click.echo(f"Error: unknown policy {policy!r}")
        return

    limiter = RateLimiter(await create_store())
    try:
        result = await limiter.status(identifier, RATE_LIMITS[policy], route_tag=route)
    finally:
        await close_redis()
    click.echo(
        f"{identifier} [{route}] {result.count}/{result.limit} used, "
        f"{result.remaining} remaining, allowed={result.allowed}"
    )


@ratelimit.command("reset")
@click.argument("identifier")
@click.option("--route", default="default", help="Route tag (request path)")
def ratelimit_reset(identifier, route):
    """Delete a counter."""
    run_async(_ratelimit_reset(identifier, route))


async def _ratelimit_reset(identifier, route):
    from shared.rate_limit import RateLimiter
    from shared.redis import close_redis
    from shared.store import create_store

    limiter = RateLimiter(await create_store())
    try:
        await limiter.reset(identifier, route_tag=route)
    finally:
        await close_redis()
    click.echo(f"Reset {identifier} [{route}]")


if __name__ == "__main__":
    cli()
