"""
Tests for the Mermaid diagram generator script.
"""
import pytest
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from scripts.generate_state_diagrams import (  # noqa: E402
    END_MARKER,
    MENU_LABELS,
    START_MARKER,
    _sanitize_id,
    check_markdown_file,
    format_diagrams_as_markdown,
    generate_all_diagrams,
    generate_mermaid_from_transitions,
    generate_order_status_diagram,
    main,
    update_markdown_file,
)
from agrimove.db.models import OrderStatus  # noqa: E402
from agrimove.state_machine.states import MENU_TRANSITIONS, MenuState  # noqa: E402


class TestSanitizeId:

    @pytest.mark.unit
    def test_replaces_dots(self) -> None:
        assert _sanitize_id("MENU.PRODUCE_LIST") == "MENU_PRODUCE_LIST"

    @pytest.mark.unit
    def test_replaces_whitespace(self) -> None:
        assert _sanitize_id("in transit") == "in_transit"

    @pytest.mark.unit
    def test_plain_id_unchanged(self) -> None:
        assert _sanitize_id("WELCOME") == "WELCOME"


class TestMenuDiagram:

    @pytest.fixture
    def mermaid(self) -> str:
        return generate_mermaid_from_transitions(
            MENU_TRANSITIONS, MENU_LABELS, initial=MenuState.WELCOME
        )

    @pytest.mark.unit
    def test_starts_with_state_diagram_v2(self, mermaid) -> None:
        assert mermaid.startswith("stateDiagram-v2")

    @pytest.mark.unit
    def test_contains_every_state(self, mermaid) -> None:
        for state in MenuState:
            assert f"{state.value} : {MENU_LABELS[state.value]}" in mermaid

    @pytest.mark.unit
    def test_contains_every_transition(self, mermaid) -> None:
        for source, targets in MENU_TRANSITIONS.items():
            for target in targets:
                assert f"{source.value} --> {target.value}" in mermaid

    @pytest.mark.unit
    def test_initial_arrow(self, mermaid) -> None:
        assert "[*] --> WELCOME" in mermaid

    @pytest.mark.unit
    def test_no_initial_arrow_by_default(self) -> None:
        assert "[*]" not in generate_mermaid_from_transitions(MENU_TRANSITIONS, MENU_LABELS)

    @pytest.mark.unit
    def test_every_state_has_label(self) -> None:
        assert set(MENU_LABELS) == {state.value for state in MenuState}


class TestOrderStatusDiagram:

    @pytest.mark.unit
    def test_covers_every_status(self) -> None:
        mermaid = generate_order_status_diagram()
        for status in OrderStatus.values():
            assert f"    {status} : " in mermaid


class TestMarkdownFile:

    @pytest.mark.unit
    def test_readme_is_in_sync(self) -> None:
        markdown = format_diagrams_as_markdown(generate_all_diagrams())
        assert check_markdown_file(ROOT / "README.md", markdown)

    @pytest.mark.unit
    def test_update_appends_section(self, tmp_path) -> None:
        target = tmp_path / "DOC.md"
        target.write_text("# Title\n", encoding="utf-8")
        markdown = format_diagrams_as_markdown(generate_all_diagrams())

        update_markdown_file(target, markdown)

        content = target.read_text(encoding="utf-8")
        assert content.startswith("# Title\n\n" + START_MARKER)
        assert content.rstrip().endswith(END_MARKER)
        assert check_markdown_file(target, markdown)

    @pytest.mark.unit
    def test_update_replaces_existing_section(self, tmp_path) -> None:
        target = tmp_path / "DOC.md"
        target.write_text(
            f"intro\n\n{START_MARKER}\nstale\n{END_MARKER}\n\noutro\n", encoding="utf-8"
        )
        markdown = format_diagrams_as_markdown(generate_all_diagrams())

        update_markdown_file(target, markdown)

        content = target.read_text(encoding="utf-8")
        assert "stale" not in content
        assert content.startswith("intro\n")
        assert content.endswith("outro\n")
        assert content.count(START_MARKER) == 1

    @pytest.mark.unit
    def test_check_detects_stale_section(self, tmp_path) -> None:
        target = tmp_path / "DOC.md"
        target.write_text(f"{START_MARKER}\nstale\n{END_MARKER}\n", encoding="utf-8")

        assert main(["--check", str(target)]) == 1

    @pytest.mark.unit
    def test_check_missing_markers(self, tmp_path) -> None:
        target = tmp_path / "DOC.md"
        target.write_text("no diagrams here\n", encoding="utf-8")

        assert main(["--check", str(target)]) == 1

    @pytest.mark.unit
    def test_main_update_then_check(self, tmp_path) -> None:
        target = tmp_path / "DOC.md"

        assert main(["--update", str(target)]) == 0
        assert main(["--check", str(target)]) == 0
