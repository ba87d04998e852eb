"""Interactive machine selection for the run command."""

from collections.abc import Callable

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Label, OptionList
from textual.widgets.option_list import Option

from flotilla.constants import DEFAULT_NAME_COLUMN_WIDTH, EPHEMERAL_GUEST_PRESET
from flotilla.providers.exceptions import SelectionCancelledError
from flotilla.providers.machines.models import Machine
from flotilla.utils import truncate_name

EPHEMERAL_OPTION_ID = "ephemeral"


def describe_machine(machine: Machine) -> str:
    name = truncate_name(machine.name or "-", DEFAULT_NAME_COLUMN_WIDTH)
    return f"{machine.id}  {name:<{DEFAULT_NAME_COLUMN_WIDTH}}  {machine.region or '-'}"


class MachinePickerApp(App[str]):
    """Selection screen listing running machines.

    The first option creates an ephemeral machine instead of reusing one.

    Parameters
    ----------
    machines : list[Machine]
        Running machines the command may be run on

    Returns
    -------
    str
        ID of the chosen machine, "ephemeral" for a new machine, or None when
        the operator quit
    """

    CSS = """
    #picker-dialog {
        height: auto;
        padding: 1 2;
        border: thick $primary;
    }

    #picker-title {
        text-style: bold;
        padding-bottom: 1;
    }
    """

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("q", "cancel", "Cancel"),
    ]

    def __init__(self, machines: list[Machine]) -> None:
        super().__init__()
        self.machines = machines

    def compose(self) -> ComposeResult:
        with Container(id="picker-dialog"):
            yield Label("Select a machine to run the command on", id="picker-title")
            yield OptionList(*self.build_options(), id="picker-options")

    def build_options(self) -> list[Option]:
        options = [
            Option(
                f"create an ephemeral {EPHEMERAL_GUEST_PRESET} machine",
                id=EPHEMERAL_OPTION_ID,
            )
        ]
        options.extend(Option(describe_machine(m), id=m.id) for m in self.machines)
        return options

    def action_cancel(self) -> None:
        self.exit(None)

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        """Finish with the ID of the selected option.

        Parameters
        ----------
        event : OptionList.OptionSelected
            Selection event
        """
        self.exit(event.option.id)


def pick_machine(
    machines: list[Machine],
    app_factory: Callable[[list[Machine]], MachinePickerApp] = MachinePickerApp,
) -> Machine | None:
    """Let the operator choose a machine.

    Returns
    -------
    Machine | None
        Chosen machine, None when a new ephemeral machine was chosen

    Raises
    ------
    SelectionCancelledError
        If the operator quit the picker
    """
    choice = app_factory(machines).run()

    if choice is None:
        raise SelectionCancelledError("Machine selection cancelled")

    if choice == EPHEMERAL_OPTION_ID:
        return None

    by_id = {m.id: m for m in machines}
    return by_id[choice]
