#!/usr/bin/env python
"""Open the local task store, migrate legacy data and add a sample task."""
import asyncio
import logging

from tasklist.config import LOG_LEVEL
from tasklist.context import build_context

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))


async def main():
    context = build_context(remove_delay=0)
    await context.start()
    controller = context.controller

    if controller.degraded:
        print("Task storage unavailable, nothing seeded")
    elif controller.tasks:
        print(f"Store already holds {len(controller.tasks)} task(s)")
    else:
        await controller.create("Sample todo item")
        print("Sample task created")

    print(controller.compute_stats().model_dump())
    context.close()


if __name__ == "__main__":
    asyncio.run(main())
