import random
import threading
from datetime import datetime, timezone

import pytest

from sage_storage.error_handling import InvalidConfig
from sage_storage.identity import parse_file_path
from sage_storage.policy.policy_engine import NodeRecord, PolicyConfig, PolicyEngine

from .conftest import NOW, make_policy, ts, years_ago

JUN_2023 = datetime(2023, 6, 1, tzinfo=timezone.utc)
JUN_2022 = datetime(2022, 6, 1, tzinfo=timezone.utc)


def ident(task, node, when):
    return parse_file_path(f"sage/{task}/{node}/{ts(when)}-sample.jpg")


def is_public(engine, identity):
    return engine.authorized(identity, "", "", False)


def test_commissioned_node_scenario():
    engine = PolicyEngine(PolicyConfig(
        username="user",
        password="secret",
        nodes={"n1": NodeRecord(restricted=False, commission_date=datetime(2023, 1, 1, tzinfo=timezone.utc))},
        restricted_task_substrings=("imagesampler",),
    ))
    assert is_public(engine, ident("safe-task", "n1", JUN_2023))
    assert not is_public(engine, ident("imagesampler-top", "n1", JUN_2023))
    assert not is_public(engine, ident("safe-task", "n1", JUN_2022))


@pytest.mark.parametrize("task,node,when,restricted", [
    ("safe-task", "commissioned1Y", NOW, False),
    ("safe-task", "commissioned1Y", datetime(2024, 1, 1, tzinfo=timezone.utc), False),
    ("safe-task", "commissioned3Y", years_ago(2), False),
    ("safe-task", "commissioned1Y", datetime(2250, 1, 1, tzinfo=timezone.utc), False),
    ("safe-task", "restrictedNode1", NOW, True),
    ("safe-task", "restrictedNode2", years_ago(5), True),
    ("imagesampler-bottom", "commissioned1Y", NOW, True),
    ("safe-task", "commissioned1Y", years_ago(2), True),
    ("safe-task", "commissioned3Y", years_ago(4), True),
    ("safe-task", "uncommissioned", NOW, True),
    ("safe-task", "unknown-node", NOW, True),
])
def test_restriction_rules(engine, task, node, when, restricted):
    identity = ident(task, node, when)
    assert engine.decide(identity).restricted is restricted
    assert is_public(engine, identity) is not restricted


def test_commission_date_boundary_is_public(engine):
    commissioned = engine.snapshot().nodes["commissioned1Y"].commission_date
    assert is_public(engine, ident("safe-task", "commissioned1Y", commissioned))


def test_decision_reports_first_matching_rule(engine):
    d = engine.decide(ident("audiosampler", "restrictedNode1", NOW))
    assert d.reason == "restricted_task"
    assert d.details == {"substring": "audiosampler"}
    assert engine.decide(ident("safe-task", "nope", NOW)).reason == "unknown_node"
    assert engine.decide(ident("safe-task", "uncommissioned", NOW)).reason == "uncommissioned"
    assert engine.decide(ident("safe-task", "commissioned1Y", years_ago(2))).reason == "before_commission_date"
    allow = engine.decide(ident("safe-task", "commissioned1Y", NOW))
    assert allow.action == "allow" and allow.rule_version == engine.version


def test_task_substring_match_is_case_sensitive(engine):
    assert is_public(engine, ident("ImageSampler-Top", "commissioned1Y", NOW))


def test_credentials(engine):
    identity = ident("safe-task", "restrictedNode1", NOW)
    assert engine.authorized(identity, "user", "secret", True)
    assert not engine.authorized(identity, "user", "secret", False)
    assert not engine.authorized(identity, "userX", "secret", True)
    assert not engine.authorized(identity, "user", "secretY", True)
    assert not engine.authorized(identity, "", "", True)


def test_authorized_is_pure(engine):
    identity = ident("safe-task", "commissioned3Y", years_ago(4))
    results = {engine.authorized(identity, "user", "wrong", True) for _ in range(10)}
    assert results == {False}


def test_empty_engine_denies_everything():
    engine = PolicyEngine()
    identity = ident("safe-task", "n1", NOW)
    assert engine.snapshot() is None
    assert engine.decide(identity).reason == "no_config"
    assert not engine.authorized(identity, "user", "secret", True)


def test_update_config_publishes_new_version(engine):
    first = engine.snapshot()
    published = engine.update_config(make_policy(password="rotated"))
    assert published.version == first.version + 1
    assert engine.snapshot() is published
    identity = ident("safe-task", "restrictedNode1", NOW)
    assert not engine.authorized(identity, "user", "secret", True)
    assert engine.authorized(identity, "user", "rotated", True)


def test_published_snapshot_is_isolated_from_caller_mutation():
    nodes = {"n1": NodeRecord(restricted=False, commission_date=years_ago(1))}
    engine = PolicyEngine(PolicyConfig(username="u", password="p", nodes=nodes))
    nodes["n1"] = NodeRecord(restricted=True)
    assert is_public(engine, ident("safe-task", "n1", NOW))
    with pytest.raises(TypeError):
        engine.snapshot().nodes["n2"] = NodeRecord()


@pytest.mark.parametrize("bad", [
    None,
    {"username": "u"},
    PolicyConfig(username="u", password=None),
    PolicyConfig(username="u", password="p", nodes=None),
    PolicyConfig(username="u", password="p", nodes={"n": {"restricted": True}}),
    PolicyConfig(username="u", password="p", nodes={"n": NodeRecord(commission_date="2023-01-01")}),
    PolicyConfig(username="u", password="p", restricted_task_substrings="imagesampler"),
    PolicyConfig(username="u", password="p", restricted_task_substrings=(1,)),
])
def test_update_config_rejects_invalid(engine, bad):
    before = engine.snapshot()
    with pytest.raises(InvalidConfig):
        engine.update_config(bad)
    assert engine.snapshot() is before


def test_random_restricted_nodes():
    nodes = {f"node{i:03d}": NodeRecord(restricted=random.random() < 0.5, commission_date=years_ago(1)) for i in range(200)}
    engine = PolicyEngine(PolicyConfig(username="user", password="secret", nodes=nodes))
    for node_id, node in nodes.items():
        identity = ident("safe-task", node_id, NOW)
        if node.restricted:
            assert not engine.authorized(identity, "", "", False)
            assert not engine.authorized(identity, "userX", "secret", True)
        assert engine.authorized(identity, "user", "secret", True)


def _versioned_policy(i: int) -> PolicyConfig:
    # every field encodes i so a mixed snapshot is detectable
    return PolicyConfig(
        username=f"user{i}",
        password=f"secret{i}",
        nodes={f"node{i}": NodeRecord(restricted=bool(i % 2), commission_date=years_ago(1))},
        restricted_task_substrings=(f"task{i}",),
    )


def test_concurrent_updates_and_evaluations():
    engine = PolicyEngine(_versioned_policy(0))
    errors = []
    stop = threading.Event()

    def writer(offset):
        try:
            for i in range(offset, offset + 200):
                engine.update_config(_versioned_policy(i))
        except Exception as e:  # pragma: no cover - reported below
            errors.append(e)

    def reader():
        try:
            while not stop.is_set():
                snap = engine.snapshot()
                i = snap.username[len("user"):]
                assert snap.password == f"secret{i}"
                assert list(snap.nodes) == [f"node{i}"]
                assert snap.restricted_task_substrings == (f"task{i}",)
                identity = ident("safe-task", f"node{i}", NOW)
                result = engine.authorized(identity, f"user{i}", f"secret{i}", True)
                assert isinstance(result, bool)
        except Exception as e:
            errors.append(e)

    readers = [threading.Thread(target=reader) for _ in range(8)]
    writers = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
    for t in readers + writers:
        t.start()
    for t in writers:
        t.join()
    stop.set()
    for t in readers:
        t.join()

    assert errors == []
    assert engine.version == 1 + 4 * 200


def test_check_returns_grant_and_decision_from_one_snapshot(engine):
    identity = ident("safe-task", "restrictedNode1", NOW)
    granted, decision = engine.check(identity, "", "", False)
    assert granted is False
    assert decision.reason == "restricted_node"
    assert decision.rule_version == engine.version

    granted, decision = engine.check(identity, "user", "secret", True)
    assert granted is True
    assert decision.restricted

    granted, decision = engine.check(ident("safe-task", "commissioned1Y", NOW), "", "", False)
    assert granted is True and decision.action == "allow"
