#!/usr/bin/env python3
"""
Publish/subscribe example.

Subscribes to a topic and publishes a few events to it over RawSocket with
MessagePack. Needs a router accepting RawSocket connections for realm1 at
tcp://localhost:8081, or pass another URL as the first argument.
"""

import asyncio
import sys
import logging
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wampclient import Client, ClientConfig, PublishOptions, SerializerType

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main(url: str) -> None:
    config = ClientConfig(serializers=[SerializerType.MSGPACK, SerializerType.JSON])
    received = asyncio.Queue()

    async def on_tick(count, **details):
        await received.put(count)

    async with Client(config) as client:
        await client.connect(url)
        await client.join_realm("realm1")

        subscription_id = await client.subscribe("com.example.tick", on_tick)
        logger.info(f"Subscribed with ID {subscription_id}")

        # The router does not echo events to their publisher unless asked to.
        options = PublishOptions().with_exclude_me(False).with_acknowledge()
        for count in range(3):
            publication_id = await client.publish("com.example.tick", [count], options=options)
            logger.info(f"Published tick {count} as publication {publication_id}")

        for _ in range(3):
            count = await asyncio.wait_for(received.get(), 5.0)
            logger.info(f"Received tick {count}")

        await client.unsubscribe(subscription_id)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "tcp://localhost:8081"))
