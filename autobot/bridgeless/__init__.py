"""Bridgeless deposits — chain adapters, bridge client, confirmation tracker."""

from autobot.bridgeless.chains import BridgelessClient, build_chain_adapters
from autobot.bridgeless.tracker import DepositTracker, is_confirmed

__all__ = ["BridgelessClient", "DepositTracker", "build_chain_adapters", "is_confirmed"]
