from __future__ import annotations

import itertools
import random

import pytest

from linkband_monitor.coordinator import SensorActivationCoordinator
from linkband_monitor.errors import CommandResult
from linkband_monitor.sensors import SensorKind

EEG, PPG, ACC = SensorKind.EEG, SensorKind.PPG, SensorKind.ACC


@pytest.fixture
def coordinator(store, fake_service):
    return SensorActivationCoordinator(store, fake_service)


def test_selection_follows_net_effect_of_toggles(store, coordinator):
    rng = random.Random(7)
    expected: set = set()
    for _ in range(200):
        kind = rng.choice(list(SensorKind))
        selected = rng.random() < 0.5
        coordinator.on_selection_changed(kind, selected)
        if selected:
            expected.add(kind)
        else:
            expected.discard(kind)
        assert store.get("selected_sensors") == frozenset(expected)


def test_reselecting_is_idempotent_and_sends_nothing(store, fake_service, coordinator):
    assert coordinator.on_selection_changed(EEG, True) is True
    assert coordinator.on_selection_changed(EEG, True) is False
    assert coordinator.on_selection_changed(PPG, False) is False

    assert store.get("selected_sensors") == frozenset({EEG})
    assert fake_service.commands == ["select:EEG"]


def test_start_with_empty_selection_is_rejected(store, fake_service, coordinator):
    assert coordinator.on_start_requested() is CommandResult.NOTHING_SELECTED
    assert store.get("activation_requested") is False
    assert fake_service.commands == []


def test_start_then_activation(store, fake_service, coordinator):
    coordinator.on_selection_changed(EEG, True)
    coordinator.on_selection_changed(PPG, True)

    assert coordinator.on_start_requested() is CommandResult.ACCEPTED
    assert store.get("activation_requested") is True
    assert coordinator.is_pending_activation(EEG)
    assert fake_service.commands[-1] == "start_selected_sensors"

    coordinator.on_collection_active_changed(True)

    assert store.get("started_sensors") == frozenset({EEG, PPG})
    assert store.get("activation_requested") is False
    assert not coordinator.is_pending_activation(EEG)


def test_selection_added_during_collection_is_pending(store, coordinator):
    coordinator.on_selection_changed(EEG, True)
    coordinator.on_start_requested()
    store.set("collection_active", True)
    coordinator.on_collection_active_changed(True)

    coordinator.on_selection_changed(ACC, True)

    assert store.get("selected_sensors") == frozenset({EEG, ACC})
    assert store.get("started_sensors") == frozenset({EEG})
    assert coordinator.is_pending_activation(ACC)
    assert not coordinator.is_pending_activation(EEG)


@pytest.mark.parametrize(
    "toggles",
    [
        [],
        [(EEG, True)],
        [(EEG, True), (PPG, True), (EEG, False)],
        [(ACC, True), (ACC, True), (PPG, True), (ACC, False), (ACC, True)],
    ],
)
def test_activation_snapshots_current_selection(store, coordinator, toggles):
    for kind, selected in toggles:
        coordinator.on_selection_changed(kind, selected)
    selection = store.get("selected_sensors")

    coordinator.on_collection_active_changed(True)

    assert store.get("started_sensors") == selection
    assert store.get("activation_requested") is False


def test_snapshot_is_not_aliased_to_later_selection(store, coordinator):
    coordinator.on_selection_changed(EEG, True)
    coordinator.on_collection_active_changed(True)
    coordinator.on_selection_changed(PPG, True)
    coordinator.on_selection_changed(EEG, False)

    assert store.get("started_sensors") == frozenset({EEG})


def test_deactivation_clears_snapshot_and_request(store, coordinator):
    coordinator.on_selection_changed(PPG, True)
    coordinator.on_start_requested()
    coordinator.on_collection_active_changed(True)
    coordinator.on_start_requested()

    coordinator.on_collection_active_changed(False)

    assert store.get("started_sensors") == frozenset()
    assert store.get("activation_requested") is False


def test_unrequested_activation_is_tolerated(store, coordinator):
    coordinator.on_selection_changed(ACC, True)

    coordinator.on_collection_active_changed(True)

    assert store.get("started_sensors") == frozenset({ACC})
    assert store.get("activation_requested") is False


def test_stop_before_activation_withdraws_request(store, fake_service, coordinator):
    coordinator.on_selection_changed(EEG, True)
    coordinator.on_start_requested()

    assert coordinator.on_stop_requested() is CommandResult.ACCEPTED
    assert store.get("activation_requested") is False
    assert not coordinator.is_pending_activation(EEG)
    assert fake_service.commands[-1] == "stop_selected_sensors"


def test_stop_during_collection_waits_for_device(store, coordinator):
    coordinator.on_selection_changed(EEG, True)
    store.set("collection_active", True)
    coordinator.on_collection_active_changed(True)

    coordinator.on_stop_requested()

    assert store.get("started_sensors") == frozenset({EEG})


def test_never_pending_when_not_selected(store, coordinator):
    for requested, active in itertools.product([False, True], repeat=2):
        store.update(
            activation_requested=requested,
            collection_active=active,
            started_sensors=frozenset(),
        )
        for kind in SensorKind:
            assert not coordinator.is_pending_activation(kind)
