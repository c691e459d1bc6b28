"""Source dispatcher - runs every API of a config and emits the results."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .config import API, Config
from .context import EVENT_DROP_COUNT, CollectorContext
from .emitter import Dataset, Emitter
from .errors import ConfigError, FlexError
from .merger import SampleMerger, assign_merge_target
from .metric_parser import MetricParser
from .normalizer import normalize
from .pipeline import Pipeline, compile_pipeline
from .prometheus import prometheus_samples
from .sample import Sample
from .sources import FetchResult, SourceRegistry
from .templates import reads_scratch

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one dispatcher run."""

    datasets: list[Dataset] = field(default_factory=list)
    failures: list[FetchResult] = field(default_factory=list)
    emitted: int = 0
    dropped: int = 0
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures


def plan_waves(apis: list[API]) -> list[list[API]]:
    """
    Group APIs into waves that may run concurrently.

    An API that reads the datastore, lookup store or variable store
    starts a new wave, so everything declared before it has finished.
    """
    waves: list[list[API]] = []
    current: list[API] = []
    for api in apis:
        if current and reads_scratch(api):
            waves.append(current)
            current = []
        current.append(api)
    if current:
        waves.append(current)
    return waves


class Dispatcher:
    """
    Runs the APIs of one config against a collector context.

    Each API is fetched, normalized, reshaped and, when configured,
    run through the metric parser. Every dispatch unit becomes a
    dataset; datasets are emitted in the order they completed.
    """

    def __init__(self, config: Config, context: CollectorContext):
        self.config = config
        self.context = context
        self._datasets: list[Dataset] = []
        self._failures: list[FetchResult] = []

    async def run(self) -> RunResult:
        start = time.time()
        self._datasets = []
        self._failures = []
        semaphore = asyncio.Semaphore(max(self.context.settings.max_concurrency, 1))

        async def _bounded(api: API):
            async with semaphore:
                try:
                    await self._run_api(api)
                except Exception as e:
                    logger.error(f"Unexpected error in API {api.name or '<unnamed>'}: {e}", exc_info=True)
                    self._fail(api.name or "<unnamed>", str(e))

        for wave in plan_waves(self.config.apis):
            await asyncio.gather(*(_bounded(api) for api in wave))

        result = RunResult(datasets=self._datasets, failures=self._failures)
        self._emit(result)
        result.duration_ms = (time.time() - start) * 1000
        logger.info(
            f"Config {self.config.name or self.config.file_name}: {len(result.datasets)} datasets, "
            f"{result.emitted} emitted, {result.dropped} dropped, "
            f"{len(result.failures)} failures in {result.duration_ms:.1f}ms"
        )
        return result

    def _fail(self, unit: str, error: str, timed_out: bool = False):
        self.context.counters.increment(EVENT_DROP_COUNT)
        self._failures.append(FetchResult(unit=unit, success=False, error=error, timed_out=timed_out))

    async def _run_api(self, api: API):
        name = api.name or "<unnamed>"
        try:
            pipeline = compile_pipeline(api, self.config.custom_attributes)
        except ConfigError as e:
            logger.error(f"Skipping API {name}: {e}")
            self._fail(name, str(e))
            return

        fetcher = SourceRegistry.create(api, self.config)
        if fetcher is None:
            self._fail(name, "no usable source selector")
            return

        try:
            results = await fetcher.fetch()
        except Exception as e:
            logger.error(f"Error running source {name}: {e}")
            self._fail(name, str(e))
            return
        finally:
            await fetcher.close()

        self.config.datastore[api.name] = []
        parser = None
        if api.metric_parser.is_enabled():
            parser = MetricParser(
                api.metric_parser,
                api.name,
                self.context.namespace_state,
                self.context.summaries,
            )

        for result in results:
            if not result.success:
                self.context.counters.increment(EVENT_DROP_COUNT)
                self._failures.append(result)
                continue
            self.config.datastore[api.name].append(result.output)
            if result.ignore_output:
                logger.debug(f"{result.unit}: output stored, not emitted")
                continue
            try:
                dataset = self._process(api, result, pipeline, parser)
            except FlexError as e:
                logger.warning(f"Processing failed for {result.unit}: {e}")
                self._fail(result.unit, str(e))
                continue
            self._store_scratch(api, dataset.samples)
            self._datasets.append(dataset)
            logger.debug(
                f"{result.unit}: {len(dataset.samples)} samples in {result.duration_ms:.1f}ms"
            )

    def _process(
        self,
        api: API,
        result: FetchResult,
        pipeline: Pipeline,
        parser: Optional[MetricParser],
    ) -> Dataset:
        if api.prometheus.enable and isinstance(result.output, str):
            samples = prometheus_samples(result.output, api)
        else:
            samples = normalize(result.output, result.options, api, result.event_type)

        if result.custom_attributes:
            attributes = dict(self.config.custom_attributes)
            attributes.update(result.custom_attributes)
            pipeline = compile_pipeline(api, attributes)
        shaped = pipeline.run(samples)
        if shaped.dropped:
            self.context.counters.increment(EVENT_DROP_COUNT, shaped.dropped)

        samples = assign_merge_target(api, shaped.samples)
        if parser is not None:
            now = time.time()
            for sample in samples:
                parser.apply(sample, now)
        return Dataset(api=api, unit=result.unit, samples=samples, parser=parser, dropped=shaped.dropped)

    def _store_scratch(self, api: API, samples: list[Sample]):
        for lookup, key in api.store_lookups.items():
            values = self.config.lookup_store.setdefault(lookup, [])
            for sample in samples:
                value = sample.get(key)
                if value is not None and str(value) not in values:
                    values.append(str(value))
        for variable, key in api.store_variables.items():
            for sample in samples:
                if key in sample:
                    self.config.variable_store[variable] = str(sample[key])

    def _emit(self, result: RunResult):
        emitter = Emitter(self.context, self.config)
        datasets = self._merge_samples(emitter, result.datasets)
        for dataset in datasets:
            emitted = emitter.emit(dataset)
            result.emitted += emitted.emitted
            result.dropped += emitted.dropped
        result.datasets = datasets

    def _merge_samples(self, emitter: Emitter, datasets: list[Dataset]) -> list[Dataset]:
        """Apply the config's sample_merge rules across all payload-bound datasets."""
        merger = SampleMerger(self.config.sample_merge)
        if not merger.rules:
            return datasets
        candidates = [ds for ds in datasets if not emitter.is_metric_bound(ds)]
        originals: list[Sample] = [s for ds in candidates for s in ds.samples]
        merged = merger.merge(originals)
        kept: set[int] = {id(s) for s in merged}
        for dataset in candidates:
            dataset.samples = [s for s in dataset.samples if id(s) in kept]
        original_ids = {id(s) for s in originals}
        produced = [s for s in merged if id(s) not in original_ids]
        if produced:
            datasets = datasets + [
                Dataset(api=API(name=self.config.name or "sample_merge"), unit="sample_merge", samples=produced)
            ]
        return datasets
