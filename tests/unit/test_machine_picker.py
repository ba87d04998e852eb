"""Unit tests for the interactive machine picker."""

from unittest.mock import Mock

import pytest

from flotilla.providers.exceptions import SelectionCancelledError
from flotilla.tui.machine_picker import (
    EPHEMERAL_OPTION_ID,
    MachinePickerApp,
    describe_machine,
    pick_machine,
)
from tests.unit.fakes.fake_machines_client import make_machine


@pytest.fixture
def machines():
    return [make_machine("m1", name="web-1"), make_machine("m2", name="worker-with-a-long-name")]


class TestMachinePickerApp:
    def test_first_option_creates_ephemeral_machine(self, machines) -> None:
        app = MachinePickerApp(machines)

        options = app.build_options()

        assert options[0].id == EPHEMERAL_OPTION_ID
        assert "shared-cpu-1x" in str(options[0].prompt)
        assert [o.id for o in options[1:]] == ["m1", "m2"]

    def test_bindings_defined(self, machines) -> None:
        app = MachinePickerApp(machines)

        binding_keys = [binding[0] for binding in app.BINDINGS]
        assert "escape" in binding_keys
        assert "q" in binding_keys

    def test_action_cancel_exits_without_choice(self, machines) -> None:
        app = MachinePickerApp(machines)
        app.exit = Mock()

        app.action_cancel()

        app.exit.assert_called_once_with(None)

    def test_selection_exits_with_option_id(self, machines) -> None:
        app = MachinePickerApp(machines)
        app.exit = Mock()
        event = Mock()
        event.option.id = "m2"

        app.on_option_list_option_selected(event)

        app.exit.assert_called_once_with("m2")


def test_describe_machine_truncates_long_names() -> None:
    line = describe_machine(make_machine("m2", name="worker-with-a-long-name", region="fra"))

    assert line.startswith("m2  worker-with-a-lo...")
    assert line.endswith("fra")


def fake_app(choice):
    def factory(machines):
        app = Mock()
        app.run.return_value = choice
        return app

    return factory


def test_pick_machine_returns_chosen_machine(machines) -> None:
    assert pick_machine(machines, app_factory=fake_app("m2")) is machines[1]


def test_pick_machine_ephemeral_choice(machines) -> None:
    assert pick_machine(machines, app_factory=fake_app(EPHEMERAL_OPTION_ID)) is None


def test_pick_machine_cancelled(machines) -> None:
    with pytest.raises(SelectionCancelledError):
        pick_machine(machines, app_factory=fake_app(None))
