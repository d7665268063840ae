#!/usr/bin/env python3
"""
Setup Verification Script

Loads .env, validates the booking configuration and probes every backing
service the assistant talks to.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv(project_root / ".env")


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_settings():
    """Load and validate settings. Returns Settings or None."""
    from pydantic import ValidationError

    from app.config import get_settings

    try:
        settings = get_settings()
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "settings"
            print_result(field.upper(), False, error["msg"])
        return None

    hours = settings.business_hours
    print_result("Business hours", True, (
        f"days {','.join(str(d) for d in hours.days)}, "
        f"{hours.start_hour:02d}:00-{hours.end_hour:02d}:00 {hours.timezone}"
    ))
    print_result("Booking window", True, (
        f"{hours.min_advance_hours}h to {hours.max_advance_hours}h ahead, "
        f"buffer {hours.buffer_minutes} min"
    ))
    print_result("Booking store", True, settings.booking_store)
    print_result("Message parser", True, settings.parser_backend)
    return settings


async def check_postgres() -> bool:
    """Verify PostgreSQL connection."""
    try:
        from app.infra.database import check_db_health
        healthy = await check_db_health()
        print_result("PostgreSQL", healthy, "Connection successful" if healthy else "Connection failed")
        return healthy

    except Exception as e:
        print_result("PostgreSQL", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    """Verify Redis connection."""
    try:
        from app.infra.redis import check_redis_health
        healthy = await check_redis_health()
        if healthy:
            print_result("Redis", True, "Connection successful")
        else:
            print_result("Redis", False, "Connection failed (sessions will use process memory)")
        return healthy

    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def check_endpoint(name: str, url: str) -> bool:
    """Check an integration base URL answers at all."""
    import httpx

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(url)
        print_result(name, True, f"Reachable at {url} ({response.status_code})")
        return True
    except httpx.HTTPError:
        print_result(name, False, f"Not reachable at {url}")
        return False


async def check_anthropic(api_key: str, model: str) -> bool:
    """Verify the Anthropic key with a minimal request."""
    from anthropic import AsyncAnthropic, AuthenticationError, RateLimitError

    client = AsyncAnthropic(api_key=api_key)
    try:
        await client.messages.create(
            model=model,
            max_tokens=10,
            messages=[{"role": "user", "content": "Hi"}],
        )
        print_result("Anthropic API", True, "Key validated successfully")
        return True
    except RateLimitError:
        print_result("Anthropic API", True, "Key valid (rate limited)")
        return True
    except AuthenticationError:
        print_result("Anthropic API", False, "Invalid API key")
        return False
    except Exception as e:
        print_result("Anthropic API", False, str(e)[:50])
        return False
    finally:
        await client.close()


async def main() -> int:
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Booking Assistant - Setup Verification")
    print("="*60)

    print_header("Environment File")
    env_found = (project_root / ".env").exists()
    print_result(".env file", env_found, "Found" if env_found else "Not found, using defaults and environment")

    print_header("Configuration")
    settings = check_settings()
    if settings is None:
        print("\n  \033[91mCRITICAL: Configuration is invalid.\033[0m\n")
        return 1

    print_header("Service Connections")
    critical_failed = False

    if settings.booking_store == "sql":
        if not await check_postgres():
            critical_failed = True
    else:
        print_result("PostgreSQL", True, "Skipped - in-memory booking store")

    await check_redis()  # Non-critical

    if settings.calendar_enabled:
        await check_endpoint("Calendar API", settings.calendar_api_url)
    else:
        print_result("Calendar API", True, "Disabled")

    if settings.crm_enabled:
        await check_endpoint("CRM API", settings.crm_api_url)
    else:
        print_result("CRM API", True, "Disabled")

    if settings.parser_backend == "claude":
        if not settings.anthropic_api_key:
            print_result("Anthropic API", False, "ANTHROPIC_API_KEY not set (rule parser will be used)")
        else:
            await check_anthropic(settings.anthropic_api_key, settings.claude_parser_model)

    print_header("Summary")
    if critical_failed:
        print("\n  \033[91mCRITICAL: The booking database is unreachable.\033[0m")
        print("  Fix DATABASE_URL or set BOOKING_STORE=memory for a local demo.\n")
        return 1

    print("\n  \033[92mReady.\033[0m Start the application with:")
    print("    uvicorn app.main:app --reload\n")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
