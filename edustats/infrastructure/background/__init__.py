# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task infrastructure module for EduStats.

Provides background statistics processing with Dramatiq:
- Redis broker for message persistence and durability
- Actors for rollup updates, rebuilds and periodic jobs
- APScheduler integration for the periodic jobs

Quick Start:
    # Setup broker (call once at startup)
    from edustats.infrastructure.background import setup_dramatiq
    setup_dramatiq()

    # Send tasks
    from edustats.infrastructure.background.tasks import update_class_statistics_task
    update_class_statistics_task.send(class_id)

Running Workers:
    dramatiq edustats.infrastructure.background.tasks --processes 2 --threads 4

Scheduler:
    from edustats.infrastructure.background import start_scheduler, stop_scheduler

    await start_scheduler()
    await stop_scheduler()
"""

from edustats.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)
from edustats.infrastructure.background.scheduler import (
    DramatiqScheduler,
    ScheduledTask,
    get_scheduler,
    register_statistics_jobs,
    start_scheduler,
    stop_scheduler,
)

# Task actors are imported from .tasks directly, after broker setup

__all__ = [
    # Broker
    "BrokerManager",
    "Priority",
    "Queues",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
    # Scheduler
    "DramatiqScheduler",
    "ScheduledTask",
    "get_scheduler",
    "register_statistics_jobs",
    "start_scheduler",
    "stop_scheduler",
]
