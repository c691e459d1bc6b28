"""Flex Agent - runs configs on an interval and ships the results."""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Optional, TextIO

from .config import AgentSettings, Config
from .context import CONFIGS_PROCESSED, CollectorContext, Metrics
from .dispatcher import Dispatcher, RunResult
from .emitter import flush_summaries
from .exporter import InsightsClient, MetricAPIClient
from .loader import load_configs
from .payload import IntegrationPayload

logger = logging.getLogger(__name__)

STATUS_EVENT_TYPE = "flexStatusSample"


@dataclass
class Harvest:
    """What one harvest drained and where it went."""

    batches: list[Metrics] = field(default_factory=list)
    payload: Optional[IntegrationPayload] = None
    metrics_sent: bool = False
    events_sent: bool = False


class Agent:
    """
    Main flex collection agent.

    Every cycle runs all loaded configs against one collector context
    (``run_once``), then drains the metrics store and the integration
    payload (``harvest``). Counter state for rate/delta metrics lives in
    the context and survives between cycles.
    """

    def __init__(
        self,
        settings: AgentSettings,
        configs: Optional[list[Config]] = None,
        output: Optional[TextIO] = None,
    ):
        self.settings = settings
        self.context = CollectorContext(settings)
        self.configs: list[Config] = configs or []
        # configs read from disk are re-read every cycle so scratch stores start clean
        self._from_disk = configs is None
        self.output = output
        self.metric_client: Optional[MetricAPIClient] = None
        self.insights_client: Optional[InsightsClient] = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    def setup(self):
        """Load configs and create export clients."""
        if self._from_disk:
            self.configs = load_configs(self.settings)

        if self.settings.metric_api_key:
            self.metric_client = MetricAPIClient(
                self.settings.metric_api_url,
                api_key=self.settings.metric_api_key,
            )
        if self.settings.insights_output and self.settings.insights_url:
            self.insights_client = InsightsClient(
                self.settings.insights_url,
                api_key=self.settings.insights_api_key,
            )

        logger.info(f"Agent initialized with {len(self.configs)} configs")

    async def run_once(self) -> list[RunResult]:
        """Run every config once, concurrently."""
        self.context.counters.refresh()

        async def _run_config(config: Config) -> RunResult:
            result = await Dispatcher(config, self.context).run()
            self.context.counters.increment(CONFIGS_PROCESSED)
            return result

        return list(await asyncio.gather(*(_run_config(c) for c in self.configs)))

    def status_attributes(self) -> dict[str, int]:
        return {f"flex.counter.{k}": v for k, v in self.context.counters.snapshot().items()}

    async def harvest(self) -> Harvest:
        """Drain the store and the payload and send them where configured."""
        flush_summaries(self.context)
        harvest = Harvest(batches=self.context.store.drain())

        self.context.payload.add_metric_set(STATUS_EVENT_TYPE, self.status_attributes())
        harvest.payload = self.context.new_payload()

        if self.metric_client and harvest.batches:
            harvest.metrics_sent = await self.metric_client.send_batches(harvest.batches)
        elif harvest.batches and self.metric_client is None:
            logger.debug(f"No Metric API key configured, discarding {len(harvest.batches)} batches")

        if self.insights_client:
            harvest.events_sent = await self.insights_client.send_events(harvest.payload.all_metrics())

        if self.settings.local and self.output is not None:
            self.output.write(harvest.payload.to_json() + "\n")
            self.output.flush()
        return harvest

    async def run(self):
        """Run the agent main loop until stopped."""
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info("Starting Flex Agent...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        while self._running:
            if self._from_disk:
                self.configs = load_configs(self.settings)
            await self.run_once()
            await self.harvest()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.interval)
            except asyncio.TimeoutError:
                continue
            break

        await self.stop()

    async def stop(self):
        """Stop the agent and close export clients."""
        logger.info("Stopping Flex Agent...")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        for client in (self.metric_client, self.insights_client):
            if client:
                await client.close()
