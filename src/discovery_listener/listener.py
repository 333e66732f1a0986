"""
Device register listener: MQTT connection manager for discovery announcements.

Connects to the register broker with bounded retry, subscribes to the register
topic with the announcement decoder as callback, then parks until stop() is
called or the connection drops. The broker connection is always released on
the way out.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional

import paho.mqtt.client as mqtt

from discovery_listener.broker_uri import BrokerURI, build_broker_uri
from discovery_listener.config import ListenerConfig
from discovery_listener.decoder import AnnouncementDecoder
from discovery_listener.models import DiscoveredDevice

logger = logging.getLogger(__name__)

_PREFIX = "[Register listener]"


class ListenerError(RuntimeError):
    """Base class for errors that end the listener."""


class BrokerConnectError(ListenerError):
    """Raised when a connection attempt fails (and, finally, when retries are exhausted)."""


class SubscribeError(ListenerError):
    """Raised when the register topic subscription is refused or never acknowledged."""


class ConnectionLostError(ListenerError):
    """Raised when the broker connection drops after subscribing."""


def _reason_failed(rc: Any) -> bool:
    # paho ReasonCode exposes is_failure; plain ints come from MQTT 3.x paths
    is_failure = getattr(rc, "is_failure", None)
    if is_failure is not None:
        return bool(is_failure)
    return rc != 0


def _suback_failed(rc: Any) -> bool:
    # SUBACK success codes are the granted QoS (0, 1, 2); 0x80 and up are failures
    is_failure = getattr(rc, "is_failure", None)
    if is_failure is not None:
        return bool(is_failure)
    return int(rc) >= 0x80


class RegisterListener:
    """
    Owns the single broker connection used for device registration.

    The output channel is created by the caller and shared with its consumer.
    A listener runs once: build a new one to listen again.
    """

    def __init__(
        self,
        cfg: ListenerConfig,
        output: "queue.Queue[list[DiscoveredDevice]]",
        *,
        decoder: Optional[AnnouncementDecoder] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.cfg = cfg
        self.uri: BrokerURI = build_broker_uri(cfg)
        self._log = log or logger
        self.decoder = decoder or AnnouncementDecoder(output, cfg.protocol_group, log=self._log)

        self._client: Optional[mqtt.Client] = None
        self._started = False
        self._subscribed = False
        self._live = False  # CONNACK accepted and not yet released

        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._lost_cause: Optional[str] = None

        self._connack = threading.Event()
        self._connack_rc: Any = None
        self._suback = threading.Event()
        self._suback_codes: list[Any] = []
        self._disconnected = threading.Event()

    # -------------------------
    # Public API
    # -------------------------
    def start_listening(self) -> None:
        """
        Connect, subscribe and block until stop() or connection loss.

        Returns None on a requested stop. Raises BrokerConnectError when every
        attempt failed, SubscribeError when the subscription is refused, and
        ConnectionLostError when the broker goes away while listening.
        """
        if self._started:
            raise RuntimeError("listener already started")
        self._started = True

        client = self._connect_with_retry()
        if client is None:
            self._log.info("%s Stop requested before connecting", _PREFIX)
            return None

        self._client = client
        try:
            if self._stop_event.is_set():
                return None

            try:
                self._subscribe(client)
            except SubscribeError as exc:
                self._log.info("%s Stop device register listening. Cause:%s", _PREFIX, exc)
                raise
            if self._stop_event.is_set():
                return None
            self._raise_if_lost()

            self._log.info("%s Start device register listening. topic=%s", _PREFIX, self.cfg.topic)
            self._wake.wait()

            if not self._stop_event.is_set():
                self._raise_if_lost()

            self._log.info("%s Stop device register listening. Cause:stop requested", _PREFIX)
            return None
        finally:
            self._release(client)
            self._client = None

    def stop(self) -> None:
        """Request shutdown; wakes any retry wait, ack wait or the listening park."""
        self._stop_event.set()
        self._wake.set()
        self._connack.set()
        self._suback.set()

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def _raise_if_lost(self) -> None:
        cause = self._lost_cause
        if cause is None:
            return
        self._log.info("%s Stop device register listening. Cause:%s", _PREFIX, cause)
        raise ConnectionLostError(f"Connection to {self.uri} lost: {cause}")

    # -------------------------
    # Connection
    # -------------------------
    def _connect_with_retry(self) -> Optional[mqtt.Client]:
        retries = self.cfg.retry_count
        for attempt in range(1, retries + 1):
            if self._stop_event.is_set():
                return None
            try:
                return self._create_client()
            except BrokerConnectError as exc:
                if attempt == retries:
                    raise
                self._log.error("%s Fail to initial conn for device register, %s", _PREFIX, exc)
                if self._wake.wait(timeout=self.cfg.retry_interval_s):
                    return None
                self._log.warning("%s Retry to initial conn for device register", _PREFIX)
        return None

    def _create_client(self) -> mqtt.Client:
        uri = self.uri
        if not uri.supported:
            raise BrokerConnectError(f"Unsupported broker scheme {uri.scheme!r} for {uri}")

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.cfg.client_id,
            protocol=mqtt.MQTTv311,
            transport=uri.transport,
        )
        if uri.username:
            client.username_pw_set(uri.username, uri.password)
        if uri.uses_tls:
            client.tls_set()

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self.decoder.on_message

        self._connack.clear()
        self._connack_rc = None
        if self._stop_event.is_set():
            self._connack.set()

        try:
            client.connect(uri.host, uri.port, keepalive=self.cfg.keepalive_s)
        except (OSError, ValueError) as exc:
            raise BrokerConnectError(f"Failed to connect to {uri}: {exc}") from exc
        client.loop_start()

        if not self._connack.wait(timeout=self.cfg.connect_timeout_s):
            self._abandon(client)
            raise BrokerConnectError(f"Timed out waiting for CONNACK from {uri}")
        if self._stop_event.is_set():
            return client
        if self._connack_rc is None or _reason_failed(self._connack_rc):
            rc = self._connack_rc
            self._abandon(client)
            raise BrokerConnectError(f"Connection to {uri} refused rc={rc}")

        self._log.info("%s Connected to %s as %s", _PREFIX, uri, self.cfg.client_id)
        return client

    def _subscribe(self, client: mqtt.Client) -> None:
        self._suback.clear()
        self._suback_codes = []
        if self._stop_event.is_set():
            return

        result, _mid = client.subscribe(self.cfg.topic, qos=self.cfg.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(f"subscribe to {self.cfg.topic} failed rc={result}")
        if not self._suback.wait(timeout=self.cfg.connect_timeout_s):
            raise SubscribeError(f"Timed out waiting for SUBACK on {self.cfg.topic}")
        if self._stop_event.is_set() or self._lost_cause is not None:
            return
        if not self._suback_codes or any(_suback_failed(rc) for rc in self._suback_codes):
            raise SubscribeError(f"subscribe to {self.cfg.topic} refused: {self._suback_codes}")
        self._subscribed = True

    def _release(self, client: mqtt.Client) -> None:
        # a disconnect requested from here is never a lost connection
        self._live = False
        self._subscribed = False
        try:
            if client.is_connected():
                self._disconnected.clear()
                client.disconnect()
                quiesce_s = self.cfg.quiesce_ms / 1000.0
                if not self._disconnected.wait(timeout=quiesce_s):
                    self._log.warning("%s Disconnect not confirmed within %d ms", _PREFIX, self.cfg.quiesce_ms)
                else:
                    self._log.info("%s Disconnected from %s", _PREFIX, self.uri)
        except Exception as exc:
            self._log.debug("%s Ignoring error while disconnecting: %s", _PREFIX, exc)
        finally:
            client.loop_stop()

    def _abandon(self, client: mqtt.Client) -> None:
        try:
            client.loop_stop()
            # no callbacks arrive once the loop has stopped
            self._live = False
            client.disconnect()
        except Exception as exc:
            self._log.debug("%s Ignoring error while dropping failed client: %s", _PREFIX, exc)

    # -------------------------
    # paho callbacks (network thread)
    # -------------------------
    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, rc: Any, properties: Any = None) -> None:
        if _reason_failed(rc):
            self._log.error("%s MQTT connect failed rc=%s", _PREFIX, rc)
        else:
            self._live = True
        self._connack_rc = rc
        self._connack.set()

    def _on_subscribe(
        self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: Any, properties: Any = None
    ) -> None:
        self._suback_codes = list(reason_codes or [])
        self._suback.set()

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, flags: Any, rc: Any = 0, properties: Any = None
    ) -> None:
        self._disconnected.set()
        if not self._live or self._stop_event.is_set():
            return
        self._live = False
        self._log.warning("%s Unexpected disconnect rc=%s", _PREFIX, rc)
        self._lost_cause = str(rc)
        # wake a pending SUBACK wait as well as the listening park
        self._suback.set()
        self._wake.set()
