from deslop.verification.discover import DiscoveryResult, discover_verification_commands
from deslop.verification.runner import run_verification_command, truncate_output

__all__ = [
    "DiscoveryResult",
    "discover_verification_commands",
    "run_verification_command",
    "truncate_output",
]
