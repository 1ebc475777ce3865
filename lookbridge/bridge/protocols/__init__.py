"""
LookBridge Protocol Modules

Provides:
  - ProtocolModule   : Common dispatch / receive / fee / trusted-remote logic
  - LayerZeroModule  : LayerZero endpoint adapter
  - CelerModule      : Celer MessageBus adapter
  - HyperlaneModule  : Hyperlane Mailbox adapter (with multisig ISM)
  - InMemoryTransport: In-process network connecting simulated chains
"""

from .base import ProtocolModule, SettlementHandler
from .celer import CelerModule
from .hyperlane import HyperlaneModule, MultisigISM
from .layerzero import LayerZeroModule
from .transport import InMemoryTransport

MODULE_CLASSES = {
    LayerZeroModule.protocol_id: LayerZeroModule,
    CelerModule.protocol_id: CelerModule,
    HyperlaneModule.protocol_id: HyperlaneModule,
}

__all__ = [
    "ProtocolModule",
    "SettlementHandler",
    "LayerZeroModule",
    "CelerModule",
    "HyperlaneModule",
    "MultisigISM",
    "InMemoryTransport",
    "MODULE_CLASSES",
]
