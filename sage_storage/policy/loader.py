"""
Policy file loading and background reload.

The policy file is YAML (JSON is valid YAML):

  username: user
  password: secret
  nodes:
    W001: {restricted: false, commission_date: 2023-01-01T00:00:00Z}
  restricted_task_substrings: [imagesampler-top]

PolicyReloader polls the file modification time and publishes a fresh snapshot
through PolicyEngine.update_config whenever it changes. A failed reload keeps
the previously published snapshot.
"""
from __future__ import annotations

import logging
import threading
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..error_handling import InvalidConfig
from .policy_engine import NodeRecord, PolicyConfig, PolicyEngine

logger = logging.getLogger(__name__)


def _parse_commission_date(node_id: str, value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time())
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidConfig(f"node {node_id!r}: invalid commission_date {value!r}") from e
    else:
        raise InvalidConfig(f"node {node_id!r}: invalid commission_date {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def policy_config_from_dict(
    raw: Any,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> PolicyConfig:
    """Build a PolicyConfig from decoded YAML/JSON. username/password override the file values."""
    if not isinstance(raw, dict):
        raise InvalidConfig("policy config must be a mapping")

    nodes_raw = raw.get("nodes")
    if nodes_raw is None:
        nodes_raw = {}
    if not isinstance(nodes_raw, dict):
        raise InvalidConfig("nodes must be a mapping")

    nodes: Dict[str, NodeRecord] = {}
    for node_id, entry in nodes_raw.items():
        node_id = str(node_id)
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise InvalidConfig(f"node {node_id!r} must be a mapping")
        restricted = entry.get("restricted", False)
        if not isinstance(restricted, bool):
            raise InvalidConfig(f"node {node_id!r}: restricted must be a boolean")
        nodes[node_id] = NodeRecord(
            restricted=restricted,
            commission_date=_parse_commission_date(node_id, entry.get("commission_date")),
        )

    subs = raw.get("restricted_task_substrings") or []
    if not isinstance(subs, list) or not all(isinstance(s, str) for s in subs):
        raise InvalidConfig("restricted_task_substrings must be a list of strings")

    username = username if username is not None else raw.get("username")
    password = password if password is not None else raw.get("password")
    if not isinstance(username, str) or not isinstance(password, str):
        raise InvalidConfig("username and password are required")

    return PolicyConfig(
        username=username,
        password=password,
        nodes=nodes,
        restricted_task_substrings=tuple(subs),
    )


def load_policy_file(path, username: Optional[str] = None, password: Optional[str] = None) -> PolicyConfig:
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InvalidConfig(f"could not parse policy file {path}: {e}") from e
    return policy_config_from_dict(raw, username=username, password=password)


class PolicyReloader:
    def __init__(
        self,
        engine: PolicyEngine,
        path,
        interval: float = 30.0,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.engine = engine
        self.path = Path(path)
        self.interval = interval
        self.username = username
        self.password = password
        self._mtime: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def reload_now(self) -> bool:
        """Publish the file if it changed since the last successful load. Returns True on publish."""
        try:
            mtime = self.path.stat().st_mtime
        except OSError as e:
            logger.warning("policy file %s unavailable: %s", self.path, e)
            return False
        if self._mtime is not None and mtime == self._mtime:
            return False
        try:
            config = load_policy_file(self.path, username=self.username, password=self.password)
            published = self.engine.update_config(config)
        except (InvalidConfig, OSError) as e:
            logger.error("policy reload from %s rejected, keeping version %d: %s", self.path, self.engine.version, e)
            return False
        self._mtime = mtime
        logger.info(
            "policy version %d loaded from %s (%d nodes, %d restricted task substrings)",
            published.version, self.path, len(published.nodes), len(published.restricted_task_substrings),
        )
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.reload_now()
            except Exception:
                logger.exception("unexpected error reloading policy file %s", self.path)

    def start(self) -> None:
        if self._thread is not None or self.interval <= 0:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="policy-reloader", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
