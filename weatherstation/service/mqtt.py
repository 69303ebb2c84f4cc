"""
MQTT publisher.
Periodically publishes the values of every connected sensor as JSON.
"""

import asyncio
import json
import logging
from typing import Optional

import aiomqtt

from ..utils.config import MqttOptions
from .context import GatewayContext


CLIENT_ID = "ble-weatherstation-central"
TOPIC_PREFIX = "sensors/weatherstation"
KEEP_ALIVE = 60


def sensor_topic(address) -> str:
    return f"{TOPIC_PREFIX}/{address}"


class MqttPublisher:
    """Publishes connected sensor values every `interval` seconds."""

    def __init__(self,
                 ctx: GatewayContext,
                 options: MqttOptions,
                 interval: float = 60,
                 logger: Optional[logging.Logger] = None):
        self.ctx = ctx
        self.options = options
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)

    def create_client(self) -> aiomqtt.Client:
        tls_params = None
        if self.options.tls:
            tls_params = aiomqtt.TLSParameters(ca_certs=str(self.options.cert_file))
        return aiomqtt.Client(
            hostname=self.options.host,
            port=self.options.port,
            username=self.options.username,
            password=self.options.password,
            identifier=CLIENT_ID,
            keepalive=KEEP_ALIVE,
            tls_params=tls_params,
        )

    async def publish_once(self, client: aiomqtt.Client) -> int:
        """
        Publish every connected sensor once.

        Returns:
            int: Number of messages published
        """
        async with self.ctx.lock.read():
            messages = [
                (sensor_topic(addr), json.dumps(state.values.to_dict()))
                for addr, state in self.ctx.sorted_sensors()
                if state.is_connected
            ]

        published = 0
        for topic, payload in messages:
            try:
                await client.publish(topic, payload)
                published += 1
            except aiomqtt.MqttError as e:
                self.logger.error(f"Failed publishing to mqtt server: {e}")
        return published

    async def run(self):
        """Connect and publish until cancelled. A failed connect ends the task."""
        if not self.options.tls:
            self.logger.warning("Using non ssl mqtt")
        async with self.create_client() as client:
            self.logger.info(f"Connected to mqtt server {self.options.host}:{self.options.port}")
            while True:
                await self.publish_once(client)
                await asyncio.sleep(self.interval)
