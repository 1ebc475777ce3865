"""
LookCoin Token

Provides:
  - LookToken      : Per-chain LOOK ledger with bridge mint / burn hooks
  - LookMintEvent  : Mint event record
  - LookBurnEvent  : Burn event record
"""

from .look import LookBurnEvent, LookMintEvent, LookToken

__all__ = [
    "LookToken",
    "LookMintEvent",
    "LookBurnEvent",
]
