"""
Financial Portal Client Entry Point.

Bootstraps the entire dependency graph via constructor injection,
initialises the local SQLite schema, restores any persisted session and
performs the initial navigation and catalog fetch.  Every subsystem is
wired here; no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys
import traceback
from pathlib import Path

from portal.api_client import ApiClient, ApiError, ErrorReporter, RequestGuard
from portal.auth import SessionManager
from portal.config import get_config
from portal.database import DatabaseManager
from portal.logger import StructuredLogger, get_logger
from portal.routing import Router, build_portal_routes
from portal.schema import initialize_schema
from portal.services import create_services
from portal.services.dashboard import balance_chart, distribution_chart
from portal.storage import EncryptedSqliteStorage, MemoryStorage


async def main() -> None:
    """Application entry point: wire dependencies and start the session."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting financial portal client...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Local database backing the durable storage scope
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="database"),
    )

    # DatabaseManager.close() is safe to call multiple times.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Storage scopes + Session Manager
    # ------------------------------------------------------------------
    durable = EncryptedSqliteStorage(
        db=db,
        logger=StructuredLogger(name="storage"),
        salt_path=Path(config.SESSION_SALT_PATH),
    )
    session = SessionManager(
        durable=durable,
        ephemeral=MemoryStorage(),
        logger=StructuredLogger(name="session"),
        keys=config.storage_keys,
        refresh_lead_ms=config.REFRESH_LEAD_MS,
    )
    session.hydrate()

    # ------------------------------------------------------------------
    # 5. Router + REST client (request guard, error reporter)
    # ------------------------------------------------------------------
    router = Router(
        session=session,
        routes=build_portal_routes(),
        logger=get_logger("router"),
        login_path=config.LOGIN_PATH,
        landing_path=config.LANDING_PATH,
        max_redirects=config.MAX_REDIRECTS,
    )
    http_logger = get_logger("http", api_url=config.API_URL)
    api = ApiClient(
        base_url=config.API_URL,
        guard=RequestGuard(
            session=session,
            router=router,
            logger=http_logger,
            login_path=config.LOGIN_PATH,
        ),
        reporter=ErrorReporter(logger=http_logger),
        logger=http_logger,
        timeout=config.HTTP_TIMEOUT_S,
    )

    # ------------------------------------------------------------------
    # 6. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(config=config, session=session, router=router, api=api)

    # ------------------------------------------------------------------
    # 7. Initial navigation and catalog fetch
    # ------------------------------------------------------------------
    try:
        landed = router.navigate("/")
        logger.info("Initial route: %s", landed)

        if session.is_authenticated:
            products_service = services["products_service"]
            try:
                summary = await products_service.get_financial_summary()
            except ApiError as exc:
                logger.warning("Could not load the dashboard: %s", exc.message)
            else:
                for chart in (distribution_chart(summary), balance_chart(summary)):
                    logger.info(
                        "%s: %s",
                        chart.title,
                        dict(zip(chart.labels, chart.values)),
                    )
                logger.info(
                    "Active products: %d, total balance: %.2f",
                    summary.active_products,
                    summary.total_balance,
                )
    finally:
        await services["auth_service"].wait_for_background_tasks()
        await api.close()
        db.close()
        logger.info("Financial portal client shut down.")


def _show_fatal_error(exc: BaseException) -> None:
    """Write a fatal-error report to stderr so the operator gets feedback."""
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _show_fatal_error(exc)
        sys.exit(1)
