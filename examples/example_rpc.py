#!/usr/bin/env python3
"""
Remote procedure call example.

Registers two procedures on a WAMP router and calls them back through the
router. Needs a router (for example Crossbar.io) serving realm1 at
ws://localhost:8080/ws, or pass another URL as the first argument.
"""

import asyncio
import sys
import logging
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wampclient import ApplicationError, CallResult, Client, ClientConfig, RegisterOptions, InvokePolicy

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b


def divide(a: float, b: float) -> CallResult:
    """Divide two numbers; runs in a worker thread because it is synchronous."""
    if b == 0:
        raise ApplicationError("com.example.divide_by_zero", "Cannot divide by zero", dividend=a)
    return CallResult(args=[a / b], kwargs={"remainder": a % b})


async def main(url: str) -> None:
    config = ClientConfig(agent="wampclient-example/0.1", call_timeout=5.0)

    async with Client(config) as client:
        await client.connect(url)
        session_id = await client.join_realm("realm1")
        logger.info(f"Joined realm1 as session {session_id}")

        await client.register("com.example.add", add)
        await client.register("com.example.divide", divide,
                              options=RegisterOptions().with_invoke(InvokePolicy.ROUNDROBIN))

        result = await client.call("com.example.add", [2, 3])
        logger.info(f"add(2, 3) = {result.value}")

        result = await client.call("com.example.divide", [7, 2])
        logger.info(f"divide(7, 2) = {result.value}, remainder {result.kwargs['remainder']}")

        try:
            await client.call("com.example.divide", [1, 0])
        except ApplicationError as e:
            logger.info(f"divide(1, 0) failed as expected: {e.uri} {e.kwargs}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "ws://localhost:8080/ws"))
