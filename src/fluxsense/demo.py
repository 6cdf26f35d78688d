"""Demo session against the scripted mock sensor."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict

from .session.client import SensorClient
from .session.config import ClientConfig, StorageConfig
from .session.mock import MockTransport

DEMO_EPOCH_MS = 1_700_000_000_000


class _SteppedClock:
    def __init__(self, start_ms: int) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


async def _no_wait(_seconds: float) -> None:
    return None


async def run_demo_session(out_dir: Path, samples: int = 30, interval_ms: int = 1000) -> Dict[str, str]:
    config = ClientConfig(transport="mock", storage=StorageConfig(folder=out_dir))
    clock = _SteppedClock(DEMO_EPOCH_MS)
    device = MockTransport(name="Demo Chamber", interval=None)
    client = SensorClient(device, config, clock=clock, sleep=_no_wait)

    await client.connect("MOCK-01")
    await client.start_acquisition()
    first = clock()
    for _ in range(samples):
        clock.advance(interval_ms)
        device.emit_sample(interval_ms / 1000.0)
    last = clock()
    measurement_path = await client.stop_acquisition()
    flux_path = await client.save_flux((first, last))
    await client.disconnect()

    result = {"flux": flux_path}
    if measurement_path:
        result["measurements"] = measurement_path
    return result


def run_demo(out_dir: Path, samples: int = 30) -> Dict[str, str]:
    out_dir.mkdir(parents=True, exist_ok=True)
    return asyncio.run(run_demo_session(out_dir, samples=samples))
