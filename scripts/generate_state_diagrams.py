"""
Generate Mermaid diagrams from the menu state machine and order lifecycle.

Usage:
    python scripts/generate_state_diagrams.py                   # print to stdout
    python scripts/generate_state_diagrams.py --update README.md
    python scripts/generate_state_diagrams.py --check README.md # CI: fail when out of date
"""
import argparse
import re
import sys
from pathlib import Path
from typing import Any

# Allow running from a checkout without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from agrimove.state_machine.states import MENU_TRANSITIONS, MenuState  # noqa: E402

START_MARKER = "<!-- STATE_DIAGRAMS_START -->"
END_MARKER = "<!-- STATE_DIAGRAMS_END -->"

MENU_LABELS: dict[str, str] = {
    MenuState.WELCOME.value: "Welcome / role selection",
    MenuState.MAIN_MENU.value: "Role main menu",
    MenuState.PRODUCE_LIST.value: "Browse products",
    MenuState.ORDER_STATUS.value: "My orders",
    MenuState.FARM_INFO.value: "Nearby farms",
    MenuState.PLACE_ORDER.value: "Cart building",
    MenuState.CONFIRM_ORDER.value: "Address and confirmation",
}


def _sanitize_id(state_value: str) -> str:
    """Mermaid ids cannot contain dots or spaces"""
    return re.sub(r"[.\s]", "_", state_value)


def generate_mermaid_from_transitions(
    transitions: dict[Any, list[Any]],
    labels: dict[str, str],
    initial: Any = None,
) -> str:
    """
    Build a ``stateDiagram-v2`` block from a {state: [targets]} mapping.

    Args:
        transitions: transition table
        labels: {state value: human readable label}
        initial: state drawn with an arrow from ``[*]``
    """
    lines: list[str] = ["stateDiagram-v2"]

    all_states: set[str] = set()
    for source, targets in transitions.items():
        all_states.add(source.value)
        all_states.update(target.value for target in targets)

    for state_value in sorted(all_states):
        lines.append(f"    {_sanitize_id(state_value)} : {labels.get(state_value, state_value)}")

    lines.append("")
    if initial is not None:
        lines.append(f"    [*] --> {_sanitize_id(initial.value)}")
        lines.append("")

    for source, targets in transitions.items():
        source_id = _sanitize_id(source.value)
        for target in targets:
            lines.append(f"    {source_id} --> {_sanitize_id(target.value)}")

    return "\n".join(lines)


def generate_order_status_diagram() -> str:
    """Order lifecycle as driven by the back office through /api/orders/{id}/notify"""
    return """stateDiagram-v2
    pending : Pending
    confirmed : Confirmed
    in_transit : In transit
    delivered : Delivered
    cancelled : Cancelled

    [*] --> pending : checkout over USSD/WhatsApp
    pending --> confirmed
    pending --> cancelled
    confirmed --> in_transit
    confirmed --> cancelled
    in_transit --> delivered
    delivered --> [*]
    cancelled --> [*]"""


def generate_all_diagrams() -> dict[str, str]:
    return {
        "Menu (MenuState)": generate_mermaid_from_transitions(
            MENU_TRANSITIONS, MENU_LABELS, initial=MenuState.WELCOME,
        ),
        "Order status (OrderStatus)": generate_order_status_diagram(),
    }


def format_diagrams_as_markdown(diagrams: dict[str, str]) -> str:
    sections: list[str] = []
    for name, mermaid_code in diagrams.items():
        sections.append(f"#### {name}\n")
        sections.append(f"```mermaid\n{mermaid_code}\n```\n")
    return "\n".join(sections)


def _section(markdown_content: str) -> str:
    return f"{START_MARKER}\n\n### State diagrams\n\n{markdown_content}\n{END_MARKER}"


_SECTION_PATTERN = re.compile(re.escape(START_MARKER) + r".*?" + re.escape(END_MARKER), re.DOTALL)


def update_markdown_file(path: Path, markdown_content: str) -> None:
    """Replace the marked section of ``path``, or append one"""
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    new_section = _section(markdown_content)

    if START_MARKER in content:
        content = _SECTION_PATTERN.sub(lambda _: new_section, content)
    else:
        content = content.rstrip("\n") + "\n\n" + new_section + "\n"

    path.write_text(content, encoding="utf-8")
    print(f"Updated: {path}")


def check_markdown_file(path: Path, markdown_content: str) -> bool:
    """True when the marked section of ``path`` matches the code"""
    if not path.exists():
        print(f"Error: {path} not found")
        return False

    match = _SECTION_PATTERN.search(path.read_text(encoding="utf-8"))
    if not match:
        print(f"Error: no state diagram markers in {path}")
        return False

    if match.group(0) == _section(markdown_content):
        print("State diagrams are in sync")
        return True

    print(f"Error: state diagrams in {path} are out of date")
    print(f"Run: python scripts/generate_state_diagrams.py --update {path}")
    return False


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate Mermaid diagrams of the menu state machine")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--update", type=Path, metavar="FILE", help="rewrite the diagram section of FILE")
    group.add_argument("--check", type=Path, metavar="FILE", help="exit 1 when FILE is out of date")
    args = parser.parse_args(argv)

    markdown = format_diagrams_as_markdown(generate_all_diagrams())

    if args.check:
        return 0 if check_markdown_file(args.check, markdown) else 1
    if args.update:
        update_markdown_file(args.update, markdown)
        return 0

    print(markdown)
    return 0


if __name__ == "__main__":
    sys.exit(main())
