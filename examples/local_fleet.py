"""
Local Fleet Demo: several workers drain one queue, one of them crashes.

Runs entirely in-process on an InMemoryEnsemble, so no ZooKeeper is needed.
Shows:
1. Workers racing for items without a scheduler
2. Backpressure: each worker claims at most its pool size
3. A crashed worker's claims returning to the queue

Run:
    python examples/local_fleet.py
"""

import logging
import os
import random
import sys
import threading
import time
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env")
# One-second re-scan period unless configured otherwise.
os.environ.setdefault("DWQ_SCAN_PERIOD_SECONDS", "1")

from dwq import DistributedWorkQueue, InMemoryEnsemble, WorkerPool  # noqa: E402
from dwq.config import get_settings  # noqa: E402

QUEUE = "/dwq/demo/thumbnails"


class Thumbnailer:
    """Pretend to render a thumbnail; records which worker did it."""

    def __init__(self, worker: str, done: dict, lock: threading.Lock) -> None:
        self.worker = worker
        self.done = done
        self.lock = lock

    def new_processor(self) -> "Thumbnailer":
        return Thumbnailer(self.worker, self.done, self.lock)

    def process(self, work_id: str, data: bytes) -> None:
        time.sleep(random.uniform(0.01, 0.05))
        with self.lock:
            self.done.setdefault(work_id, []).append(self.worker)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(threadName)s %(name)s: %(message)s")
    settings = get_settings()
    ensemble = InMemoryEnsemble()
    done: dict = {}
    lock = threading.Lock()

    producer = DistributedWorkQueue(QUEUE, ensemble.connect(), settings=settings)
    ids = {f"image-{i:03d}" for i in range(60)}
    for work_id in sorted(ids):
        producer.add_work(work_id, f"s3://bucket/{work_id}.png".encode())

    workers = []
    for name in ("alpha", "beta", "gamma"):
        client = ensemble.connect()
        queue = DistributedWorkQueue(QUEUE, client, settings=settings)
        pool = WorkerPool(max_workers=settings.pool_size, thread_name_prefix=f"dwq-{name}")
        queue.start_processing(Thumbnailer(name, done, lock), pool)
        workers.append((name, client, queue, pool))

    # Crash one worker mid-run; its claimed items go back to the queue.
    time.sleep(0.1)
    crashed_name, crashed_client, crashed_queue, _ = workers[1]
    print(f"Crashing worker {crashed_name}")
    ensemble.expire_session(crashed_client.session_id)
    crashed_queue.stop()

    started = time.monotonic()
    producer.wait_until_done(ids, timeout=max(10.0, settings.scan_period_seconds * 2))
    print(f"Queue drained in {time.monotonic() - started:.2f}s")

    for name, _, queue, pool in workers:
        queue.stop()
        pool.shutdown()

    by_worker: dict = {}
    for work_id, names in done.items():
        for name in names:
            by_worker[name] = by_worker.get(name, 0) + 1
    repeats = sorted(w for w, names in done.items() if len(names) > 1)

    print("Items processed per worker:")
    for name, count in sorted(by_worker.items()):
        print(f"  {name:6s} {count}")
    print(f"Processed more than once (at-least-once delivery): {repeats or 'none'}")
    for name, _, queue, _ in workers:
        print(f"\n{name} metrics:")
        print(queue.metrics.prometheus_format())


if __name__ == "__main__":
    main()
