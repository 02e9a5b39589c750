import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn

from iotfleet.config import load_config
from iotfleet.errors import ConfigError, FleetStartupError
from iotfleet.fleet import run_fleet
from iotfleet.logging_config import setup_logging

log = logging.getLogger("iotfleet")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="iotfleet", description="Simulate IoT nodes submitting to a ledger.")
    parser.add_argument("-c", "--config", type=Path, help="Path to config.toml.")
    parser.add_argument("-n", "--network", help="Network table to use from the config.")
    parser.add_argument("--nodes", type=int, help="Number of simultaneous nodes to simulate.")
    parser.add_argument("-p", "--period", type=float, help="Seconds between one node's transmissions.")
    parser.add_argument("-m", "--mode", choices=["direct", "discovery"], help="Endpoint selection mode.")
    parser.add_argument("--pool-max", type=int, help="Maximum endpoint pool size.")
    parser.add_argument("--seed", type=int, help="RNG seed for a reproducible fleet.")
    parser.add_argument("--api", action="store_true", help="Serve the control API while the fleet runs.")
    parser.add_argument("--log-level", help="Override LOG_LEVEL.")
    return parser.parse_args(argv)


def overrides(a) -> dict:
    return {
        "nodes": a.nodes,
        "period_sec": a.period,
        "seed": a.seed,
        "endpoints.mode": a.mode,
        "endpoints.pool_max": a.pool_max,
    }


def main(argv=None) -> int:
    a = parse_args(argv)
    setup_logging(a.log_level)
    try:
        conf = load_config(a.config, network=a.network).with_overrides(**overrides(a))
    except ConfigError as e:
        log.error("config: %s", e)
        return 2

    try:
        if a.api:
            from iotfleet.app import create_app
            uvicorn.run(create_app(conf), host=conf.control.api_host, port=conf.control.api_port,
                        lifespan="on", log_config=None)
        else:
            asyncio.run(run_fleet(conf))
    except FleetStartupError as e:
        log.error("fleet startup failed: %s", e)
        return 1
    except KeyboardInterrupt:
        log.info("interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
