"""
Process start-up for the payments engine.

``bootstrap`` turns the active configuration into a running process:
logging at the configured level, the engine built from the ``database``
section, optionally the schema, and a session factory ready for
``PaymentDesk``::

    runtime = bootstrap(create_schema=True)
    desk = PaymentDesk(runtime.session_factory, config=runtime.config)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from sqlalchemy.orm import Session

from payments_config import PaymentsConfig, get_active_config
from payments_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_settings,
)
from payments_kernel.logging_config import configure_logging, get_logger

logger = get_logger("services.bootstrap")


@dataclass(frozen=True)
class Runtime:
    config: PaymentsConfig
    session_factory: Callable[[], Session]


def bootstrap(config_path: Path | str | None = None, create_schema: bool = False) -> Runtime:
    config = get_active_config(config_path)
    configure_logging(level=config.logging.level)

    engine = init_engine_from_settings(config.database)
    if create_schema:
        create_tables()

    logger.info(
        "payments_engine_started",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "dialect": engine.dialect.name,
            "schema_created": create_schema,
        },
    )
    return Runtime(config=config, session_factory=get_session_factory())
