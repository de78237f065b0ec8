"""Push-payment gateway connectors."""

from .base import (
    ConnectorBase,
    StkPushResponse,
)
from .mpesa_connector import (
    MpesaConnector,
    build_password,
    format_timestamp,
)
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedPush,
)

__all__ = [
    # Base classes and models
    "ConnectorBase",
    "StkPushResponse",
    # Daraja
    "MpesaConnector",
    "build_password",
    "format_timestamp",
    # Simulator
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedPush",
]
