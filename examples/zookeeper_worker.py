"""
ZooKeeper Worker: produce into, or work from, a queue on a real ensemble.

Connection settings come from the environment (or a .env file at the repo
root): DWQ_ZK_HOSTS, DWQ_ZK_TIMEOUT, DWQ_POOL_SIZE, DWQ_SCAN_PERIOD_SECONDS.

Run:
    export DWQ_ZK_HOSTS=127.0.0.1:2181
    python examples/zookeeper_worker.py produce /dwq/echo a b c
    python examples/zookeeper_worker.py work /dwq/echo
    python examples/zookeeper_worker.py wait /dwq/echo a b c --timeout 60
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env")

from dwq import CallableProcessor, DistributedWorkQueue, DwqError, WorkerPool  # noqa: E402
from dwq.config import get_settings  # noqa: E402
from dwq.coordination.zookeeper import ZooKeeperClient  # noqa: E402

logger = logging.getLogger("dwq.examples.zookeeper_worker")


def echo(work_id: str, data: bytes) -> None:
    logger.info("processing %s (%d bytes): %r", work_id, len(data), data[:80])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="dwq ZooKeeper demo")
    sub = parser.add_subparsers(dest="command", required=True)

    produce = sub.add_parser("produce", help="Add work items")
    produce.add_argument("path")
    produce.add_argument("work_ids", nargs="+")

    work = sub.add_parser("work", help="Process work until interrupted")
    work.add_argument("path")
    work.add_argument("--pool-size", type=int, default=None)

    wait = sub.add_parser("wait", help="Block until the given items are done")
    wait.add_argument("path")
    wait.add_argument("work_ids", nargs="+")
    wait.add_argument("--timeout", type=float, default=None)
    return parser


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    args = build_parser().parse_args()
    settings = get_settings()
    client = ZooKeeperClient.connect(settings.zk_hosts, timeout=settings.zk_timeout)
    queue = DistributedWorkQueue(args.path, client, settings=settings)

    try:
        if args.command == "produce":
            for work_id in args.work_ids:
                queue.add_work(work_id, f"payload for {work_id}".encode())
            print(f"Queued {len(args.work_ids)} items in {queue.path}")
        elif args.command == "wait":
            queue.wait_until_done(args.work_ids, timeout=args.timeout)
            print("All items done")
        else:
            stop = threading.Event()
            signal.signal(signal.SIGINT, lambda *_: stop.set())
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            with WorkerPool(max_workers=args.pool_size or settings.pool_size) as pool:
                queue.start_processing(CallableProcessor(echo), pool)
                while not stop.wait(30):
                    logger.info("stats: %s", queue.stats)
                queue.stop()
    except DwqError as exc:
        logger.error("%s", exc.to_dict())
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
