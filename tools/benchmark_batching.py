"""
Batching and cache benchmark for queuecache.

Runs QueueService and CacheService over the in-memory adapters and reports
throughput and latency percentiles for publishing, batch publishing and
compressed cache access. No Redis server is needed; the numbers measure the
facades' own overhead (batch selection, Snappy compression), not the network.

Usage:
    pip install -e ".[tools]"
    python tools/benchmark_batching.py
    python tools/benchmark_batching.py --items 5000 --batch-sizes 10,20,100
    python tools/benchmark_batching.py --help
"""

from __future__ import annotations

import asyncio
import statistics
from dataclasses import dataclass, field
from time import perf_counter

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from queuecache import (
    CacheConfiguration,
    CacheService,
    InMemoryJobQueue,
    InMemoryKeyValueStore,
    QueueConfiguration,
    QueueService,
    RedisConnectionParams,
)
from queuecache.config import Settings

app = typer.Typer(
    help="Benchmark queuecache batching and cache access",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    items: int = 1000
    batch_sizes: list[int] = field(default_factory=lambda: [20])
    payload_size: int = 200
    mget_batch_size: int = 100


@dataclass
class BenchmarkResult:
    """Latencies of one scenario, in seconds."""

    scenario: str
    total_ops: int
    total_time: float
    latencies: list[float]
    notes: str = ""

    @property
    def ops_per_sec(self) -> float:
        return self.total_ops / self.total_time if self.total_time > 0 else 0.0

    def percentile(self, q: float) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * q), len(ordered) - 1)]

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def max_latency(self) -> float:
        return max(self.latencies) if self.latencies else 0.0


def format_latency_ms(seconds: float) -> str:
    ms = seconds * 1000
    if ms < 1:
        return f"{ms:.3f}ms"
    if ms < 10:
        return f"{ms:.2f}ms"
    return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def _queue_service(settings: Settings, backend: InMemoryJobQueue | None = None) -> QueueService:
    config = QueueConfiguration(
        service_type=settings.service_type,
        queue_name=settings.queue_name or "benchmark",
        queue_prefix=settings.queue_prefix or "benchmark",
        connection_params=RedisConnectionParams(),
    )
    return QueueService(config, backend=backend or InMemoryJobQueue(name="benchmark"))


def _cache_service(settings: Settings, entries: dict) -> CacheService:
    config = CacheConfiguration(
        service_name=settings.service_name or "benchmark",
        default_expiry=settings.default_expiry,
    )
    return CacheService(
        config,
        store=InMemoryKeyValueStore(prefix=f"{config.service_name}:", entries=entries),
        global_store=InMemoryKeyValueStore(entries=entries),
    )


async def _timed(scenario: str, calls) -> BenchmarkResult:
    latencies = []
    start = perf_counter()
    for call in calls:
        t0 = perf_counter()
        await call()
        latencies.append(perf_counter() - t0)
    return BenchmarkResult(scenario, len(latencies), perf_counter() - start, latencies)


async def bench_publish(settings: Settings, config: BenchmarkConfig) -> BenchmarkResult:
    payload = {"body": "x" * config.payload_size}
    async with _queue_service(settings) as queue:
        return await _timed(
            "publish", (lambda: queue.publish(payload) for _ in range(config.items))
        )


async def bench_publish_in_batches(
    settings: Settings, config: BenchmarkConfig, batch_size: int
) -> BenchmarkResult:
    """
    One publish_in_batches() call per item, so each latency covers a full
    read → select → update (→ promote) cycle against a growing job list.
    """
    payload = {"body": "x" * config.payload_size}
    backend = InMemoryJobQueue(name="benchmark")
    async with _queue_service(settings, backend) as queue:
        result = await _timed(
            f"batch-{batch_size}",
            (
                lambda: queue.publish_in_batches(
                    [payload], delay=settings.batch_delay_ms, batch_size=batch_size
                )
                for _ in range(config.items)
            ),
        )
        jobs = await backend.get_jobs()
    fill = config.items / (len(jobs) * batch_size) if jobs else 0.0
    result.notes = f"{len(jobs)} jobs, fill {fill:.0%}"
    return result


async def bench_cache(settings: Settings, config: BenchmarkConfig) -> list[BenchmarkResult]:
    value = "x" * config.payload_size
    keys = [f"bench:{i}" for i in range(config.items)]
    entries: dict = {}
    async with _cache_service(settings, entries) as cache:
        writes = await _timed(
            "set_key", (lambda k=k: cache.set_key(k, value) for k in keys)
        )
        stored = sum(len(entry.value) for entry in entries.values())
        if stored:
            writes.notes = f"compression {len(value) * len(keys) / stored:.1f}x"
        reads = await _timed("get_key", (lambda k=k: cache.get_key(k) for k in keys))
        start = perf_counter()
        await cache.get_values_in_batches(keys, batch_size=config.mget_batch_size)
        elapsed = perf_counter() - start
    bulk = BenchmarkResult(
        f"mget-{config.mget_batch_size}", len(keys), elapsed, [elapsed / max(len(keys), 1)]
    )
    return [writes, reads, bulk]


async def run_benchmarks(settings: Settings, config: BenchmarkConfig) -> list[BenchmarkResult]:
    results = [await bench_publish(settings, config)]
    for batch_size in config.batch_sizes:
        results.append(await bench_publish_in_batches(settings, config, batch_size))
    results.extend(await bench_cache(settings, config))
    return results


# ---------------------------------------------------------------------------
# Result Formatting
# ---------------------------------------------------------------------------


def format_results(results: list[BenchmarkResult]) -> None:
    console = Console()
    console.print()
    console.print(Panel("[bold cyan]queuecache Benchmark Results[/bold cyan]", expand=False))
    console.print()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Scenario", style="cyan", width=15)
    table.add_column("Ops/sec", justify="right", style="green")
    table.add_column("P50", justify="right")
    table.add_column("P95", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Notes", style="dim")

    for result in results:
        table.add_row(
            result.scenario,
            f"{result.ops_per_sec:.1f}",
            format_latency_ms(result.p50),
            format_latency_ms(result.percentile(0.95)),
            format_latency_ms(result.percentile(0.99)),
            format_latency_ms(result.max_latency),
            result.notes,
        )

    console.print(table)
    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    items: int = typer.Option(1000, "--items", "-n", help="Items per scenario"),
    batch_sizes: str = typer.Option(
        "",
        "--batch-sizes",
        "-b",
        help="Comma-separated batch sizes (default: QUEUECACHE_BATCH_SIZE)",
    ),
    payload_size: int = typer.Option(200, "--payload-size", help="Payload bytes per item"),
) -> None:
    """
    Benchmark queuecache over the in-memory adapters.

    Scenarios:
    - publish: one job per item
    - batch-N: publish_in_batches with batch size N
    - set_key / get_key: compressed single-key cache access
    - mget-N: get_values_in_batches over every key written
    """
    settings = Settings()
    sizes = (
        [int(s) for s in batch_sizes.split(",") if s.strip()]
        if batch_sizes
        else [settings.batch_size]
    )
    config = BenchmarkConfig(items=items, batch_sizes=sizes, payload_size=payload_size)
    format_results(asyncio.run(run_benchmarks(settings, config)))


if __name__ == "__main__":
    app()
