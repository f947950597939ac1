from .policy_engine import Decision, NodeRecord, PolicyConfig, PolicyEngine
from .loader import PolicyReloader, load_policy_file, policy_config_from_dict

__all__ = [
    "Decision",
    "NodeRecord",
    "PolicyConfig",
    "PolicyEngine",
    "PolicyReloader",
    "load_policy_file",
    "policy_config_from_dict",
]
