"""Demo entrypoint wiring the Slack sink into the standard logging tree.

This module intentionally contains a small, end-to-end "smoke test" that:

- Loads configuration from environment (`SLACK_WEBHOOK_URL` is required).
- Installs the handler on the root logger and starts the delivery worker.
- Emits a handful of events at different levels, some with structured fields.
- Shuts down (flushing the open batch) and prints the diagnostics counters.

It is **not** intended to be production wiring; it is a convenient manual
harness for checking a webhook end to end.
"""

from __future__ import annotations

import asyncio
import logging

from config import load_config
from tracing_sink import SlackLayer


async def run_demo() -> None:
    """Emit a few events through the sink and flush them."""
    cfg = load_config()
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    layer = SlackLayer(cfg.slack, cfg.sink)
    async with layer:
        log = logging.getLogger("demo.orders")
        log.debug("polling order book", extra={"depth": 10})
        log.info("order accepted", extra={"order_id": "OID1", "count": 1})
        log.warning("db timeout", extra={"query_ms": 5012, "table": "orders"})
        try:
            raise ConnectionError("upstream reset the connection")
        except ConnectionError:
            log.exception("failed to refresh positions")

        # Let the age trigger flush the batch before shutdown does it for us.
        await asyncio.sleep(cfg.sink.batch_max_age + 0.5)

    print(f"[diagnostics] {layer.diagnostics.snapshot()}")


def main() -> None:
    """CLI entrypoint for running the demo with `python -m src.main` / `python src/main.py`."""
    asyncio.run(run_demo())

if __name__ == "__main__":
    main()
