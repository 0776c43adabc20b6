"""
nextup/status.py - Pre-flight checks for the external services

The provider and the ledger are required; OBS is optional and only reported.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError, TransportError
from .models import ConnectionState

logger = logging.getLogger(__name__)

PROBE_TOURNAMENT_ID = "test"


class ServiceStatus(str, Enum):
    UNCHECKED = "unchecked"
    CHECKING = "checking"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class ServiceState:
    status: ServiceStatus = ServiceStatus.UNCHECKED
    message: str = "Not checked"

    @property
    def ok(self) -> bool:
        return self.status == ServiceStatus.OK


@dataclass
class ConfigStatus:
    provider: ServiceState = field(default_factory=ServiceState)
    ledger: ServiceState = field(default_factory=ServiceState)
    obs: ServiceState = field(default_factory=ServiceState)

    @property
    def required_services_ready(self) -> bool:
        return self.provider.ok and self.ledger.ok


async def check_provider(provider) -> ServiceState:
    """Credentials are good if the tournament list loads."""
    try:
        await provider.list_tournaments()
    except ConfigurationError:
        return ServiceState(ServiceStatus.ERROR, "Missing credentials - configure in settings")
    except TransportError as e:
        return ServiceState(ServiceStatus.ERROR, str(e))
    return ServiceState(ServiceStatus.OK, "Connected")


async def check_ledger(ledger) -> ServiceState:
    """Ledger is reachable if a probe list returns 2xx (or a 404 from a bare host)."""
    try:
        await ledger.list(PROBE_TOURNAMENT_ID)
    except ConfigurationError:
        return ServiceState(ServiceStatus.ERROR, "Missing ledger URL")
    except TransportError as e:
        if e.status == 404:
            return ServiceState(ServiceStatus.OK, "Ready")
        return ServiceState(ServiceStatus.ERROR, str(e))
    return ServiceState(ServiceStatus.OK, "Ready")


def overlay_status(state: ConnectionState) -> ServiceState:
    if state == ConnectionState.CONNECTED:
        return ServiceState(ServiceStatus.OK, "Connected")
    if state == ConnectionState.CONNECTING:
        return ServiceState(ServiceStatus.CHECKING, "Connecting...")
    return ServiceState(ServiceStatus.ERROR, "Not connected")


async def check_all(provider, ledger, overlay=None) -> ConfigStatus:
    """Run both network checks concurrently and snapshot the OBS state."""
    provider_state, ledger_state = await asyncio.gather(
        check_provider(provider), check_ledger(ledger)
    )
    status = ConfigStatus(provider=provider_state, ledger=ledger_state)
    if overlay is not None:
        status.obs = overlay_status(overlay.state)

    for name, state in (("provider", provider_state), ("ledger", ledger_state)):
        if not state.ok:
            logger.warning(f"{name} check failed: {state.message}")
    return status
