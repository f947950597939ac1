import hmac
import threading
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..error_handling import InvalidConfig
from ..identity import FileIdentity, datetime_to_ns

REASON_TASK = "restricted_task"
REASON_UNKNOWN_NODE = "unknown_node"
REASON_NODE = "restricted_node"
REASON_UNCOMMISSIONED = "uncommissioned"
REASON_EMBARGO = "before_commission_date"
REASON_NO_CONFIG = "no_config"


@dataclass(frozen=True)
class NodeRecord:
    restricted: bool = False
    commission_date: Optional[datetime] = None

    @property
    def commission_ns(self) -> Optional[int]:
        if self.commission_date is None:
            return None
        return datetime_to_ns(self.commission_date)


@dataclass(frozen=True)
class PolicyConfig:
    """
    Immutable authorization snapshot. Build a new one for every update; the
    engine never mutates a published snapshot.
    """
    username: str
    password: str
    nodes: Mapping[str, NodeRecord] = field(default_factory=dict)
    restricted_task_substrings: Tuple[str, ...] = ()
    version: int = 0


class Decision:
    """
    Decision returned by PolicyEngine.decide:
    action: 'allow' (public) | 'restrict' (requires credentials)
    reason: which rule matched, empty for public files
    details: dict with extra info (matched substring, node, commission date)
    rule_version: version of the snapshot that produced the decision
    """
    def __init__(
        self,
        action: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        rule_version: int = 0,
    ):
        self.action = action
        self.reason = reason or ""
        self.details = details or {}
        self.rule_version = rule_version

    @property
    def restricted(self) -> bool:
        return self.action == "restrict"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "reason": self.reason,
            "details": self.details,
            "rule_version": self.rule_version,
        }


def _validate(config: Any) -> None:
    if not isinstance(config, PolicyConfig):
        raise InvalidConfig(f"expected PolicyConfig, got {type(config).__name__}")
    if not isinstance(config.username, str) or not isinstance(config.password, str):
        raise InvalidConfig("username and password must be strings")
    if not isinstance(config.nodes, Mapping):
        raise InvalidConfig("nodes must be a mapping of node id to NodeRecord")
    for node_id, record in config.nodes.items():
        if not isinstance(node_id, str):
            raise InvalidConfig(f"node id {node_id!r} must be a string")
        if not isinstance(record, NodeRecord):
            raise InvalidConfig(f"node {node_id!r} must be a NodeRecord")
        if record.commission_date is not None and not isinstance(record.commission_date, datetime):
            raise InvalidConfig(f"node {node_id!r} commission_date must be a datetime")
    subs = config.restricted_task_substrings
    if isinstance(subs, (str, bytes)) or not isinstance(subs, Sequence):
        raise InvalidConfig("restricted_task_substrings must be a sequence of strings")
    for s in subs:
        if not isinstance(s, str):
            raise InvalidConfig(f"restricted task substring {s!r} must be a string")


def evaluate(config: Optional[PolicyConfig], identity: FileIdentity) -> Decision:
    """Restriction decision for identity against a single snapshot. First matching rule wins."""
    if config is None:
        return Decision("restrict", REASON_NO_CONFIG)
    version = config.version

    for sub in config.restricted_task_substrings:
        if sub in identity.task:
            return Decision("restrict", REASON_TASK, {"substring": sub}, version)

    node = config.nodes.get(identity.node)
    if node is None:
        return Decision("restrict", REASON_UNKNOWN_NODE, {"node": identity.node}, version)
    if node.restricted:
        return Decision("restrict", REASON_NODE, {"node": identity.node}, version)

    commission_ns = node.commission_ns
    if commission_ns is None:
        return Decision("restrict", REASON_UNCOMMISSIONED, {"node": identity.node}, version)
    if identity.timestamp_ns < commission_ns:
        return Decision(
            "restrict",
            REASON_EMBARGO,
            {"node": identity.node, "commission_date": node.commission_date.isoformat()},
            version,
        )

    return Decision("allow", rule_version=version)


def _credentials_match(config: PolicyConfig, username: str, password: str) -> bool:
    # compare both fields even when the first mismatches
    user_ok = hmac.compare_digest(username.encode("utf-8"), config.username.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), config.password.encode("utf-8"))
    return user_ok and pass_ok


class PolicyEngine:
    """
    Holds the published PolicyConfig snapshot and answers authorization queries.

    Readers take the current snapshot reference once per evaluation and never
    lock. update_config validates the new snapshot and publishes it with a
    single reference assignment; the lock only serializes writers.
    """
    def __init__(self, config: Optional[PolicyConfig] = None):
        self._config: Optional[PolicyConfig] = None
        self._write_lock = threading.Lock()
        self._version = 0
        if config is not None:
            self.update_config(config)

    def snapshot(self) -> Optional[PolicyConfig]:
        return self._config

    @property
    def version(self) -> int:
        config = self._config
        return config.version if config is not None else 0

    def update_config(self, config: PolicyConfig) -> PolicyConfig:
        _validate(config)
        with self._write_lock:
            self._version += 1
            published = PolicyConfig(
                username=config.username,
                password=config.password,
                nodes=MappingProxyType(dict(config.nodes)),
                restricted_task_substrings=tuple(config.restricted_task_substrings),
                version=self._version,
            )
            self._config = published
        return published

    def decide(self, identity: FileIdentity) -> Decision:
        return evaluate(self._config, identity)

    def check(
        self, identity: FileIdentity, username: str, password: str, has_credentials: bool
    ) -> Tuple[bool, Decision]:
        """Grant flag plus the restriction decision, both taken from one snapshot."""
        config = self._config
        decision = evaluate(config, identity)
        if not decision.restricted:
            return True, decision
        if config is None or not has_credentials:
            return False, decision
        return _credentials_match(config, username or "", password or ""), decision

    def authorized(self, identity: FileIdentity, username: str, password: str, has_credentials: bool) -> bool:
        return self.check(identity, username, password, has_credentials)[0]
