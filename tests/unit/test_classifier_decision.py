"""Tests for container classification and the shutdown decision.

Covers:
  - classify_containers: running / completed / unaccounted partitioning,
    totality over arbitrary observation lists, empty input
  - shutdown_due: exact set equality (not subset), unaccounted containers
    block the decision, empty sidecar set and empty pod edge cases
"""

from __future__ import annotations

import itertools

import pytest

from sidecar_terminator.controller.classifier import classify_containers
from sidecar_terminator.controller.decision import shutdown_due
from sidecar_terminator.models.pods import ContainerObservation, ContainerStateSets

SIDECARS = frozenset({"istio-proxy"})


def _obs(name: str, ready: bool = False, reason: str | None = None) -> ContainerObservation:
    return ContainerObservation(name=name, ready=ready, termination_reason=reason)


def _sets(all_: set[str], running: set[str], completed: set[str]) -> ContainerStateSets:
    return ContainerStateSets(all=frozenset(all_), running=frozenset(running), completed=frozenset(completed))


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class TestClassifyContainers:
    def test_empty_observations_yield_empty_sets(self) -> None:
        states = classify_containers([])
        assert states.all == frozenset()
        assert states.running == frozenset()
        assert states.completed == frozenset()

    def test_ready_container_is_running(self) -> None:
        states = classify_containers([_obs("istio-proxy", ready=True)])
        assert states.running == {"istio-proxy"}
        assert states.completed == frozenset()

    @pytest.mark.parametrize("reason", ["Completed", "Error"])
    def test_terminated_with_accepted_reason_is_completed(self, reason: str) -> None:
        states = classify_containers([_obs("main", reason=reason)])
        assert states.completed == {"main"}
        assert states.unaccounted == frozenset()

    @pytest.mark.parametrize("reason", [None, "OOMKilled", "ContainerCannotRun", "DeadlineExceeded"])
    def test_other_not_ready_states_are_unaccounted(self, reason: str | None) -> None:
        states = classify_containers([_obs("main", reason=reason)])
        assert states.all == {"main"}
        assert states.running == frozenset()
        assert states.completed == frozenset()
        assert states.unaccounted == {"main"}

    def test_ready_wins_over_termination_reason(self) -> None:
        # A restarted container may still report its previous termination
        states = classify_containers([_obs("main", ready=True, reason="Completed")])
        assert states.running == {"main"}
        assert states.completed == frozenset()

    def test_every_name_lands_in_exactly_one_bucket(self) -> None:
        names = ["a", "b", "c"]
        choices = [(True, None), (False, "Completed"), (False, "Error"), (False, None), (False, "OOMKilled")]
        for combo in itertools.product(choices, repeat=len(names)):
            observations = [_obs(n, ready=r, reason=reason) for n, (r, reason) in zip(names, combo, strict=True)]
            states = classify_containers(observations)

            assert states.running.isdisjoint(states.completed)
            assert states.running <= states.all
            assert states.completed <= states.all
            assert states.running | states.completed | states.unaccounted == states.all
            assert states.all == set(names)

    def test_duplicate_names_do_not_break_disjointness(self) -> None:
        states = classify_containers([_obs("x", ready=True), _obs("x", reason="Completed")])
        assert states.running == {"x"}
        assert states.completed == frozenset()

    def test_deterministic(self) -> None:
        observations = [_obs("main", reason="Completed"), _obs("istio-proxy", ready=True)]
        assert classify_containers(observations) == classify_containers(list(reversed(observations)))


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


class TestShutdownDue:
    def test_due_when_only_sidecar_running_and_rest_completed(self) -> None:
        states = _sets({"A", "B", "istio-proxy"}, {"istio-proxy"}, {"A", "B"})
        assert shutdown_due(states, SIDECARS) is True

    def test_not_due_while_main_container_still_running(self) -> None:
        states = _sets({"A", "B", "istio-proxy"}, {"istio-proxy", "A"}, {"B"})
        assert shutdown_due(states, SIDECARS) is False

    def test_not_due_when_a_container_is_unaccounted(self) -> None:
        states = _sets({"A", "B", "istio-proxy"}, {"istio-proxy"}, {"A"})
        assert shutdown_due(states, SIDECARS) is False

    def test_not_due_when_sidecar_already_dead(self) -> None:
        # running is a strict subset of the sidecars: nothing to stop
        states = _sets({"A", "istio-proxy"}, set(), {"A", "istio-proxy"})
        assert shutdown_due(states, SIDECARS) is False

    def test_requires_every_sidecar_running(self) -> None:
        sidecars = frozenset({"istio-proxy", "cloud-sql-proxy"})
        states = _sets({"A", "istio-proxy", "cloud-sql-proxy"}, {"istio-proxy"}, {"A", "cloud-sql-proxy"})
        assert shutdown_due(states, sidecars) is False

    def test_multiple_sidecars_due_together(self) -> None:
        sidecars = frozenset({"istio-proxy", "cloud-sql-proxy"})
        states = _sets({"A", "istio-proxy", "cloud-sql-proxy"}, {"istio-proxy", "cloud-sql-proxy"}, {"A"})
        assert shutdown_due(states, sidecars) is True

    def test_failed_main_container_still_triggers_shutdown(self) -> None:
        states = classify_containers([_obs("main", reason="Error"), _obs("istio-proxy", ready=True)])
        assert shutdown_due(states, SIDECARS) is True

    def test_empty_pod_is_not_due(self) -> None:
        assert shutdown_due(ContainerStateSets(), SIDECARS) is False

    def test_empty_sidecar_set_is_never_due(self) -> None:
        states = _sets({"A"}, set(), {"A"})
        assert shutdown_due(states, frozenset()) is False
        assert shutdown_due(ContainerStateSets(), frozenset()) is False

    def test_sidecar_only_pod_is_not_due(self) -> None:
        states = _sets({"istio-proxy"}, {"istio-proxy"}, set())
        assert shutdown_due(states, SIDECARS) is False

    def test_accepts_plain_set_of_sidecars(self) -> None:
        states = _sets({"A", "istio-proxy"}, {"istio-proxy"}, {"A"})
        assert shutdown_due(states, {"istio-proxy"}) is True
