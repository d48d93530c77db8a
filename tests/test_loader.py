"""Tests for the tier definition loader."""

import copy
import os
import sys

import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from cdbplan.models.errors import ValidationError
from cdbplan.models.types import ALTER_SESSION, LOCKABLE_PARAMETERS, Directive, Tier
from cdbplan.policy.data import PolicyStore
from cdbplan.policy.loader import load_policy, load_policy_text, load_tiers, parse_policy

TIERS_FILE = os.path.join(PROJECT_ROOT, "config", "tiers.yaml")

BASE = {
    "tiers": {
        "gold": {"shares": 3, "utilization_limit": 60, "parallel_server_limit": 60,
                 "locked_parameters": ["DB_PERFORMANCE_PROFILE", "MAX_IOPS"]},
        "silver": {"shares": 2, "utilization_limit": 30, "parallel_server_limit": 30},
    },
}


def _policy(**tier_overrides):
    raw = copy.deepcopy(BASE)
    raw["tiers"]["gold"].update(tier_overrides)
    return raw


# ── Example file ─────────────────────────────────────────────────────────────

def test_example_file_loads_gold_silver_bronze():
    definition = load_policy(TIERS_FILE)
    assert definition.name == "newcdb_plan"
    assert [t.name for t in definition.tiers] == ["gold", "silver", "bronze"]
    assert definition.tiers[0] == Tier("gold", 3, 60, 60)
    assert definition.tiers[1] == Tier("silver", 2, 30, 30)
    assert definition.tiers[2] == Tier("bronze", 1, 10, 10)
    assert definition.default_directive == Directive(1, 10, 10)
    assert definition.autotask_directive == Directive(2, 60)
    assert definition.pdb_assignments == {"mypdb1": "gold"}


def test_example_file_locks_every_parameter_per_tier():
    definition = load_policy(TIERS_FILE)
    assert len(definition.rules) == 3 * len(LOCKABLE_PARAMETERS)
    assert definition.lockdown_profiles == ["GOLD", "SILVER", "BRONZE"]
    gold = definition.rules_for("GOLD")
    assert [r.parameter for r in gold] == list(LOCKABLE_PARAMETERS)
    assert all(r.operation == "ALTER SYSTEM" for r in gold)
    assert gold[0].rule_name == "LOCK_DB_PERFORMANCE_PROFILE"


def test_missing_file_raises_validation_error():
    with pytest.raises(ValidationError):
        load_policy(os.path.join(PROJECT_ROOT, "does-not-exist.yaml"))


def test_policy_store_caches_until_reload():
    store = PolicyStore(TIERS_FILE)
    first = store.load()
    assert store.load() is first
    assert store.reload() is not first


# ── Tier validation ──────────────────────────────────────────────────────────

def test_defaults_when_envelope_omitted():
    definition = parse_policy(copy.deepcopy(BASE))
    assert definition.name == "newcdb_plan"
    assert definition.default_directive == Directive(1, 10, 10)
    assert definition.autotask_directive == Directive(2, 60)


def test_declaration_order_preserved():
    tiers, rules = load_tiers(copy.deepcopy(BASE["tiers"]))
    assert [t.name for t in tiers] == ["gold", "silver"]
    assert [r.parameter for r in rules] == ["DB_PERFORMANCE_PROFILE", "MAX_IOPS"]


def test_tiers_as_list():
    raw = {"tiers": [
        {"name": "gold", "shares": 3, "utilization_limit": 60, "parallel_server_limit": 60},
        {"name": "bronze", "shares": 1, "utilization_limit": 10, "parallel_server_limit": 10},
    ]}
    assert [t.name for t in parse_policy(raw).tiers] == ["gold", "bronze"]


@pytest.mark.parametrize("value", [0, 100])
def test_limit_boundaries_accepted(value):
    definition = parse_policy(_policy(utilization_limit=value, parallel_server_limit=value))
    assert definition.tiers[0].utilization_limit == value


@pytest.mark.parametrize("shares", [0, -1, "3", 1.5, True, None])
def test_rejects_invalid_shares(shares):
    with pytest.raises(ValidationError) as exc:
        parse_policy(_policy(shares=shares))
    assert exc.value.profile == "gold"
    assert "shares" in str(exc.value)


@pytest.mark.parametrize("field", ["utilization_limit", "parallel_server_limit"])
@pytest.mark.parametrize("value", [-1, 101, "50", 50.0])
def test_rejects_limits_outside_range(field, value):
    with pytest.raises(ValidationError) as exc:
        parse_policy(_policy(**{field: value}))
    assert field in str(exc.value)


def test_rejects_missing_field():
    raw = copy.deepcopy(BASE)
    del raw["tiers"]["silver"]["shares"]
    with pytest.raises(ValidationError) as exc:
        parse_policy(raw)
    assert exc.value.profile == "silver"


def test_rejects_unknown_tier_key():
    with pytest.raises(ValidationError):
        parse_policy(_policy(cpu_count=4))


def test_rejects_duplicate_tier_names_in_list():
    raw = {"tiers": [
        {"name": "gold", "shares": 3, "utilization_limit": 60, "parallel_server_limit": 60},
        {"name": "gold", "shares": 1, "utilization_limit": 10, "parallel_server_limit": 10},
    ]}
    with pytest.raises(ValidationError) as exc:
        parse_policy(raw)
    assert "duplicate" in str(exc.value)


def test_rejects_case_insensitive_duplicates():
    raw = copy.deepcopy(BASE)
    raw["tiers"]["GOLD"] = dict(raw["tiers"]["silver"])
    with pytest.raises(ValidationError):
        parse_policy(raw)


def test_rejects_duplicate_yaml_keys():
    text = """
tiers:
  gold: {shares: 3, utilization_limit: 60, parallel_server_limit: 60}
  gold: {shares: 1, utilization_limit: 10, parallel_server_limit: 10}
"""
    with pytest.raises(ValidationError) as exc:
        load_policy_text(text)
    assert "duplicate key 'gold'" in str(exc.value)


def test_rejects_invalid_tier_name():
    raw = {"tiers": {"gold-tier": {"shares": 1, "utilization_limit": 1, "parallel_server_limit": 1}}}
    with pytest.raises(ValidationError):
        parse_policy(raw)


def test_rejects_empty_tiers():
    with pytest.raises(ValidationError):
        parse_policy({"tiers": {}})


# ── Locked parameters ────────────────────────────────────────────────────────

def test_locked_parameters_normalised_to_upper_case():
    definition = parse_policy(_policy(locked_parameters=["sga_target"]))
    assert definition.rules[0].parameter == "SGA_TARGET"
    assert definition.rules[0].profile == "GOLD"


def test_rejects_parameter_outside_allowed_set():
    with pytest.raises(ValidationError) as exc:
        parse_policy(_policy(locked_parameters=["OPEN_CURSORS"]))
    assert exc.value.profile == "GOLD"
    assert exc.value.rule == "LOCK_OPEN_CURSORS"


def test_rejects_parameter_locked_twice():
    with pytest.raises(ValidationError) as exc:
        parse_policy(_policy(locked_parameters=["MAX_IOPS", "max_iops"]))
    assert exc.value.rule == "LOCK_MAX_IOPS"


def test_restricted_operation_configurable():
    raw = _policy()
    raw["lockdown"] = {"restricted_operation": "alter session"}
    definition = parse_policy(raw)
    assert all(r.operation == ALTER_SESSION for r in definition.rules)


def test_rejects_unknown_restricted_operation():
    raw = _policy()
    raw["lockdown"] = {"restricted_operation": "DROP TABLE"}
    with pytest.raises(ValidationError):
        parse_policy(raw)


# ── Envelope ─────────────────────────────────────────────────────────────────

def test_rejects_unknown_top_level_key():
    raw = copy.deepcopy(BASE)
    raw["consumer_groups"] = {}
    with pytest.raises(ValidationError):
        parse_policy(raw)


def test_autotask_directive_has_no_parallel_limit():
    raw = copy.deepcopy(BASE)
    raw["autotask_directive"] = {"shares": 2, "utilization_limit": 60, "parallel_server_limit": 10}
    with pytest.raises(ValidationError) as exc:
        parse_policy(raw)
    assert exc.value.directive == "autotask"


def test_rejects_invalid_default_directive():
    raw = copy.deepcopy(BASE)
    raw["default_directive"] = {"shares": 1, "utilization_limit": 120, "parallel_server_limit": 10}
    with pytest.raises(ValidationError) as exc:
        parse_policy(raw)
    assert exc.value.directive == "default"
    assert exc.value.plan == "newcdb_plan"


def test_rejects_pdb_with_unknown_tier():
    raw = copy.deepcopy(BASE)
    raw["pdbs"] = {"mypdb1": "platinum"}
    with pytest.raises(ValidationError):
        parse_policy(raw)


def test_pdb_tier_matched_case_insensitively():
    raw = copy.deepcopy(BASE)
    raw["pdbs"] = {"mypdb1": "GOLD"}
    assert parse_policy(raw).pdb_assignments == {"mypdb1": "gold"}


def test_rejects_invalid_plan_name():
    raw = copy.deepcopy(BASE)
    raw["plan"] = {"name": "new plan"}
    with pytest.raises(ValidationError):
        parse_policy(raw)
