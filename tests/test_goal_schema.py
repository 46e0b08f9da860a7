"""Tests for the goal message data model.

Tests cover:
- Wire form round trip, including unknown keys
- advance(): version bump, append-only provenance, immutability
- Signature envelope handling
"""

import dataclasses

import pytest
from goaldispatch.schemas import (
    GoalMessage,
    GoalState,
    Provenance,
    RepoRef,
    SignedGoalMessage,
)


def _provenance(name="SetGoalState"):
    return Provenance(
        registration="@acme/delivery",
        version="1.2.3",
        name=name,
        correlation_id="corr-1",
        ts=1550839200000,
    )


class TestGoalMessageWireForm:
    """Tests for to_dict/from_dict."""

    def test_from_dict_fields(self, goal):
        assert goal.unique_name == "build#goals.ts:42"
        assert goal.state == GoalState.IN_PROCESS
        assert goal.version == 17
        assert goal.goal_set_id == "61d31727-3006-4979-b846-9f20d4e16cdd"
        assert goal.repo == RepoRef(name="sdm-pack-node", owner="acme", provider_id="zjlmxjzwhurspem")
        assert len(goal.pre_conditions) == 2
        assert goal.pre_conditions[0].unique_name == "autofix#goals.ts:41"
        assert goal.provenance[0].name == "FulfillGoalOnRequested"
        assert goal.fulfillment.registration is None

    def test_round_trip(self, goal):
        assert GoalMessage.from_dict(goal.to_dict()) == goal

    def test_unknown_keys_are_preserved(self, goal_dict):
        goal_dict["push"] = {"repo": {"name": "sdm-pack-node"}}
        goal = GoalMessage.from_dict(goal_dict)
        assert goal.extras == {"push": {"repo": {"name": "sdm-pack-node"}}}
        assert goal.to_dict()["push"] == {"repo": {"name": "sdm-pack-node"}}

    def test_envelope_keys_are_not_extras(self, goal_dict):
        goal_dict["signature"] = "abc"
        goal_dict["signerName"] = "k"
        assert GoalMessage.from_dict(goal_dict).extras == {}

    def test_id_only_serialized_when_set(self, goal):
        assert "id" not in goal.to_dict()
        assert dataclasses.replace(goal, id="goal-1").to_dict()["id"] == "goal-1"

    def test_state_string_is_coerced(self, goal):
        updated = dataclasses.replace(goal, state="success")
        assert updated.state is GoalState.SUCCESS

    def test_negative_version_rejected(self, goal):
        with pytest.raises(ValueError, match="version"):
            dataclasses.replace(goal, version=-1)

    def test_is_frozen(self, goal):
        with pytest.raises(dataclasses.FrozenInstanceError):
            goal.version = 18


class TestGoalStateTerminal:
    """Tests for GoalState.is_terminal."""

    @pytest.mark.parametrize("state", [GoalState.SUCCESS, GoalState.FAILURE, GoalState.STOPPED])
    def test_terminal(self, state):
        assert state.is_terminal

    @pytest.mark.parametrize("state", [GoalState.REQUESTED, GoalState.IN_PROCESS, GoalState.WAITING_FOR_APPROVAL])
    def test_not_terminal(self, state):
        assert not state.is_terminal


class TestAdvance:
    """Tests for GoalMessage.advance."""

    def test_bumps_version(self, goal):
        assert goal.advance(GoalState.SUCCESS).version == goal.version + 1

    def test_appends_provenance(self, goal):
        entry = _provenance()
        updated = goal.advance(GoalState.SUCCESS, provenance=entry)
        assert updated.provenance[:-1] == goal.provenance
        assert updated.provenance[-1] == entry

    def test_without_provenance_keeps_log(self, goal):
        assert goal.advance(GoalState.SUCCESS).provenance == goal.provenance

    def test_sets_description_and_other_fields(self, goal):
        updated = goal.advance(GoalState.FAILURE, description="Failed: build", error="exit 1")
        assert updated.state == GoalState.FAILURE
        assert updated.description == "Failed: build"
        assert updated.error == "exit 1"

    def test_does_not_mutate_original(self, goal):
        goal.advance(GoalState.SUCCESS, description="done", provenance=_provenance())
        assert goal.state == GoalState.IN_PROCESS
        assert goal.version == 17
        assert goal.description == "Building"

    def test_version_is_managed(self, goal):
        with pytest.raises(ValueError, match="version"):
            goal.advance(GoalState.SUCCESS, version=99)

    def test_successive_versions_strictly_increase(self, goal):
        versions = [goal.version]
        current = goal
        for state in (GoalState.REQUESTED, GoalState.IN_PROCESS, GoalState.SUCCESS):
            current = current.advance(state)
            versions.append(current.version)
        assert versions == sorted(set(versions))


class TestSignedGoalMessage:
    """Tests for the signature envelope."""

    def test_to_dict_adds_envelope(self, goal):
        wire = SignedGoalMessage(message=goal, signature="c2ln", signer_name="acme.com/sdm").to_dict()
        assert wire["signature"] == "c2ln"
        assert wire["signerName"] == "acme.com/sdm"
        assert wire["uniqueName"] == goal.unique_name

    def test_from_dict_splits_envelope(self, goal_dict):
        goal_dict["signature"] = "c2ln"
        goal_dict["signerName"] = "acme.com/sdm"
        signed = SignedGoalMessage.from_dict(goal_dict)
        assert signed.signature == "c2ln"
        assert signed.signer_name == "acme.com/sdm"
        assert signed.message.extras == {}

    def test_unsigned_from_dict(self, goal_dict):
        signed = SignedGoalMessage.from_dict(goal_dict)
        assert signed.signature is None
        assert signed.signer_name is None
