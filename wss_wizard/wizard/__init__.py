"""
Wizard progression and validation.

Step sequencing, persisted progress tracking, pin-conflict detection and
the completion gate. The NFC provisioning state machine lives in
wss_wizard.wizard.nfc.
"""

from wss_wizard.wizard.gate import CompletionGate, GateVerdict
from wss_wizard.wizard.pins import PinClaim, detect_pin_conflicts
from wss_wizard.wizard.steps import StepSequencer, normalize_step
from wss_wizard.wizard.store import FileStore, MemoryStore, PersistentStore
from wss_wizard.wizard.tracking import CompletionFlagTracker, VisitedStepTracker

__all__ = [
    "CompletionGate",
    "GateVerdict",
    "PinClaim",
    "detect_pin_conflicts",
    "StepSequencer",
    "normalize_step",
    "FileStore",
    "MemoryStore",
    "PersistentStore",
    "CompletionFlagTracker",
    "VisitedStepTracker",
]
