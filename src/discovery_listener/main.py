"""
Discovery listener entrypoint.

CLI:
  discovery-listener run           -> run the device register listener
  discovery-listener check-config  -> validate env config and print the broker address
"""

from __future__ import annotations

import argparse
import json
import logging
import queue
import signal
import threading
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from discovery_listener.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("device-discovery-listener")
    except PackageNotFoundError:
        return "0.0.0+dev"


@dataclass
class Runtime:
    shutdown: threading.Event
    listener: Optional[object] = None
    consumer: Optional[threading.Thread] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        # The consumer keeps draining until the listener has released the
        # connection, so a full channel cannot wedge the paho loop.
        if rt.listener is not None:
            rt.listener.stop()
        else:
            rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def drain_devices(devices: queue.Queue, shutdown: threading.Event, *, poll_s: float = 0.5) -> int:
    """
    Stand-in registration consumer: log each discovered device until shutdown.
    Returns the number of devices drained.
    """
    count = 0
    while not shutdown.is_set():
        try:
            batch = devices.get(timeout=poll_s)
        except queue.Empty:
            continue
        try:
            for device in batch:
                logger.info("Discovered device: %s", json.dumps(device.to_dict(), sort_keys=True))
                count += 1
        except Exception:
            logger.exception("Error handling discovered device batch")
        finally:
            devices.task_done()
    return count


def run_listener() -> int:
    """
    Runtime mode: connect, subscribe to the register topic, block until shutdown.
    Returns process exit code.
    """
    # Lazy imports keep --version and the parser free of paho.
    from discovery_listener.config import ConfigError, load_config
    from discovery_listener.listener import ListenerError, RegisterListener

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    devices: queue.Queue = queue.Queue(maxsize=cfg.channel_size)
    rt = Runtime(shutdown=threading.Event())
    rt.listener = RegisterListener(cfg, devices)
    rt.consumer = threading.Thread(
        target=drain_devices,
        args=(devices, rt.shutdown),
        daemon=True,
        name="device-consumer",
    )
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("Device discovery listener")
    logger.info("Version: %s", cfg.agent_version)
    logger.info("Broker: %s", rt.listener.uri)
    logger.info("Topic: %s (qos=%s, protocol group=%s)", cfg.topic, cfg.qos, cfg.protocol_group)
    logger.info("============================================================")

    rt.consumer.start()
    try:
        rt.listener.start_listening()
    except ListenerError as exc:
        logger.error("Device register listener failed: %s", exc)
        return 1
    finally:
        _shutdown(rt)

    return 0


def _shutdown(rt: Runtime) -> None:
    logger.info("Shutting down...")
    rt.shutdown.set()
    if rt.consumer is not None and rt.consumer.is_alive():
        rt.consumer.join(timeout=2.0)
        if rt.consumer.is_alive():
            logger.warning("Device consumer did not stop within timeout")
    logger.info("Listener stopped")


def check_config() -> int:
    from discovery_listener.broker_uri import build_broker_uri
    from discovery_listener.config import ConfigError, load_config

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    uri = build_broker_uri(cfg)
    print(f"broker={uri} topic={cfg.topic} qos={cfg.qos} protocol_group={cfg.protocol_group}")
    if not uri.supported:
        logger.warning("Scheme %r is not supported; connecting will fail", uri.scheme)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="discovery-listener")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="Run the device register listener")
    sub.add_parser("check-config", help="Validate configuration and print the broker address")
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_listener())

    if args.cmd == "check-config":
        raise SystemExit(check_config())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
