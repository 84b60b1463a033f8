"""Environment-driven settings for the cashier service."""

import os
from typing import Optional

from pydantic import BaseModel, Field


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


class CashierSettings(BaseModel):
    """Runtime configuration, read once at startup.

    Attributes:
        kafka_bootstrap_servers: Comma-separated list of Kafka broker addresses.
        kafka_consumer_group: Consumer group of this terminal; each terminal needs its own.
        kafka_client_id: Client id used by the status producer.
        poll_interval: Seconds to yield to the event loop when a poll returns nothing.
        cashier_name: Name stamped on recorded sales.
        listen_timeout_seconds: Abandon a listening session after this many seconds.
            ``None`` waits indefinitely for the cart device.
        catalog_path: Optional JSON file with the product catalog.
        midtrans_server_key: Server key for the Snap API.
        midtrans_base_url: Snap API base URL.
        gateway_timeout: Seconds before a Snap request is abandoned.
        checkout_finish_hosts: Hosts the hosted checkout redirects to when it finishes.
    """

    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_consumer_group: str = "cashier-terminal"
    kafka_client_id: str = "cashier-service"
    poll_interval: float = Field(0.1, gt=0)
    cashier_name: str = "Admin"
    listen_timeout_seconds: Optional[float] = Field(None, gt=0)
    catalog_path: Optional[str] = None
    midtrans_server_key: str = ""
    midtrans_base_url: str = "https://app.sandbox.midtrans.com"
    gateway_timeout: float = Field(10.0, gt=0)
    checkout_finish_hosts: tuple[str, ...] = ("example.com",)

    @classmethod
    def from_env(cls) -> "CashierSettings":
        """Build settings from environment variables.

        Returns:
            CashierSettings: Settings with defaults for anything unset.
        """
        hosts = os.getenv("CHECKOUT_FINISH_HOSTS", "example.com")
        return cls(
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092"),
            kafka_consumer_group=os.getenv("KAFKA_CONSUMER_GROUP", "cashier-terminal"),
            kafka_client_id=os.getenv("KAFKA_CLIENT_ID", "cashier-service"),
            poll_interval=float(os.getenv("KAFKA_POLL_INTERVAL", "0.1")),
            cashier_name=os.getenv("CASHIER_NAME", "Admin"),
            listen_timeout_seconds=_optional_float("LISTEN_TIMEOUT_SECONDS"),
            catalog_path=os.getenv("CATALOG_PATH") or None,
            midtrans_server_key=os.getenv("MIDTRANS_SERVER_KEY", ""),
            midtrans_base_url=os.getenv("MIDTRANS_BASE_URL", "https://app.sandbox.midtrans.com"),
            gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "10")),
            checkout_finish_hosts=tuple(h.strip().lower() for h in hosts.split(",") if h.strip()),
        )
