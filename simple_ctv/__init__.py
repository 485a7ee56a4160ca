"""
simple-ctv

OP_CHECKTEMPLATEVERIFY covenant with an anchor output for CPFP fee bumping.

Architecture:
  - template:     BIP-119 template hash over the committed output set
  - script:       <H> OP_CHECKTEMPLATEVERIFY [OP_DROP] leaf
  - taproot:      single-leaf Taproot address under an unspendable internal key
  - spend:        script-path witness [script, control_block]
  - orchestrator: fund -> confirm -> parent -> CPFP child against bitcoind

Usage:
    from simple_ctv import CovenantConfig, CovenantOrchestrator

    config = CovenantConfig.from_env()
    result = CovenantOrchestrator(config).run()
"""

from .config import CovenantConfig
from .errors import (
    ConfigError,
    ConfirmationTimeout,
    CovenantError,
    DerivationError,
    EncodingError,
    NetworkError,
    RPCError,
    StageError,
    VerificationError,
    WaitCancelled,
)
from .orchestrator import CovenantOrchestrator, Stage, wait_for_confirmation
from .rpc import RPCClient
from .script import ctv_script, ScriptVariant
from .spend import build_ctv_spend, spend_ctv
from .taproot import create_ctv_address, derive_unspendable_key, TaprootSpendInfo, verify_script_path
from .template import calc_ctv_hash, Output, SequencePolicy

__version__ = "0.1.0"
__all__ = [
    # Core
    "calc_ctv_hash", "ctv_script", "create_ctv_address", "spend_ctv", "build_ctv_spend",
    "derive_unspendable_key", "verify_script_path",
    # Types
    "Output", "SequencePolicy", "ScriptVariant", "TaprootSpendInfo", "Stage",
    # Workflow
    "CovenantConfig", "CovenantOrchestrator", "RPCClient", "wait_for_confirmation",
    # Errors
    "CovenantError", "ConfigError", "EncodingError", "DerivationError", "VerificationError",
    "StageError", "NetworkError", "RPCError", "ConfirmationTimeout", "WaitCancelled",
]
