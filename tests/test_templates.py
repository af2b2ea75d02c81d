"""Tests for template parsing, override precedence and discovery."""

import pytest

from subagents.errors import ConfigError
from subagents.templates import (
    BUILTIN_TEMPLATES,
    AgentTemplate,
    TemplateSource,
    discover_template_sources,
    extract_fenced_blocks,
    find_project_root,
    load_templates,
    parse_template_document,
    project_instructions,
    resolve,
)


def doc(body: str) -> str:
    return f"# Notes\n\nSome prose.\n\n```subagents\n{body}```\n\nMore prose.\n"


TESTS_A = doc("agent:\n  - name: tests\n    instructions: A\n")
TESTS_B = doc("agent:\n  - name: tests\n    instructions: B\n")


# =====================================================================
# Fenced block extraction
# =====================================================================


class TestExtractFencedBlocks:

    def test_extracts_named_blocks_in_order(self):
        text = (
            "before\n```subagents\nagent:\n  - name: a\n```\nmiddle\n"
            "```subagents\nagent:\n  - name: b\n```\nafter\n"
        )
        blocks = extract_fenced_blocks(text)
        assert len(blocks) == 2
        assert "name: a" in blocks[0]
        assert "name: b" in blocks[1]

    def test_ignores_other_fences(self):
        text = "```yaml\nfoo: bar\n```\n```subagents\nagent:\n  - name: ok\n```\n"
        blocks = extract_fenced_blocks(text)
        assert blocks == ["agent:\n  - name: ok\n"]

    def test_skips_blank_and_unterminated_blocks(self):
        text = "```subagents\n\n```\n```subagents\nagent: []\n"
        assert extract_fenced_blocks(text) == []

    def test_indented_fence_is_recognized(self):
        text = "  ```subagents\n  agent:\n    - name: x\n  ```\n"
        assert len(extract_fenced_blocks(text)) == 1


# =====================================================================
# Document parsing
# =====================================================================


class TestParseTemplateDocument:

    def test_full_entry(self):
        text = doc(
            "agent:\n"
            "  - name: reviewer\n"
            "    instructions: Review the diff.\n"
            "    skills: [lint, pytest]\n"
            "    model: gpt-4.1-mini\n"
        )
        [t] = parse_template_document(text)
        assert t == AgentTemplate(
            name="reviewer",
            instructions="Review the diff.",
            skills=("lint", "pytest"),
            model="gpt-4.1-mini",
        )

    def test_optional_fields_default(self):
        [t] = parse_template_document(doc("agent:\n  - name: bare\n"))
        assert t.instructions == ""
        assert t.skills == ()
        assert t.model is None

    def test_document_without_blocks(self):
        assert parse_template_document("# Just a readme\n") == []

    @pytest.mark.parametrize("body", [
        "agent: [unclosed\n",
        "- just\n- a list\n",
        "agent: not-a-list\n",
        "agent:\n  - instructions: no name\n",
        "agent:\n  - name: x\n    skills: lint\n",
        "agent:\n  - name: x\n    model: 4\n",
        "agent:\n  - plain string entry\n",
    ])
    def test_malformed_raises_config_error(self, body):
        with pytest.raises(ConfigError):
            parse_template_document(doc(body), "AGENTS.md")

    def test_one_bad_block_rejects_document(self):
        text = doc("agent:\n  - name: good\n") + doc("agent: 3\n")
        with pytest.raises(ConfigError):
            parse_template_document(text)


# =====================================================================
# Resolution
# =====================================================================


class TestResolve:

    def test_builtins_only(self):
        templates = resolve([])
        assert list(templates) == ["inspect", "implement", "tests", "refactor", "docs"]
        assert all(templates[t.name] is t for t in BUILTIN_TEMPLATES)

    def test_later_document_wins(self):
        templates = resolve([
            TemplateSource("root/AGENTS.md", TESTS_A),
            TemplateSource("root/pkg/AGENTS.md", TESTS_B),
        ])
        assert templates["tests"].instructions == "B"

    def test_order_is_caller_defined(self):
        templates = resolve([
            TemplateSource("b", TESTS_B),
            TemplateSource("a", TESTS_A),
        ])
        assert templates["tests"].instructions == "A"

    def test_new_template_is_added(self):
        templates = resolve([TemplateSource("x", doc("agent:\n  - name: security\n"))])
        assert "security" in templates
        assert "inspect" in templates

    def test_documents_cannot_remove_builtins(self):
        templates = resolve([TemplateSource("x", doc("agent: []\n"))])
        assert set(templates) == {t.name for t in BUILTIN_TEMPLATES}

    def test_malformed_document_is_skipped(self, caplog):
        templates = resolve([
            TemplateSource("good-1", TESTS_A),
            TemplateSource("broken", doc("agent: [unclosed\n")),
            TemplateSource("good-2", doc("agent:\n  - name: docs\n    instructions: D\n")),
        ])
        assert templates["tests"].instructions == "A"
        assert templates["docs"].instructions == "D"
        assert any("broken" in r.getMessage() for r in caplog.records)


# =====================================================================
# Discovery
# =====================================================================


class TestDiscovery:

    def test_project_root_is_git_ancestor(self, tmp_path):
        (tmp_path / ".git").mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()

    def test_no_git_uses_cwd(self, tmp_path):
        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_sources_ordered_root_first(self, tmp_path):
        (tmp_path / ".git").mkdir()
        pkg = tmp_path / "pkg"
        sub = pkg / "sub"
        sub.mkdir(parents=True)
        (tmp_path / "AGENTS.md").write_text(TESTS_A, encoding="utf-8")
        (sub / "AGENTS.md").write_text(TESTS_B, encoding="utf-8")

        sources = discover_template_sources(sub)
        assert [s.origin for s in sources] == [
            str(tmp_path.resolve() / "AGENTS.md"),
            str(sub.resolve() / "AGENTS.md"),
        ]
        assert load_templates(sub)["tests"].instructions == "B"

    def test_files_above_root_are_ignored(self, tmp_path):
        (tmp_path / "AGENTS.md").write_text(TESTS_B, encoding="utf-8")
        repo = tmp_path / "repo"
        (repo / ".git").mkdir(parents=True)
        (repo / "AGENTS.md").write_text(TESTS_A, encoding="utf-8")

        assert load_templates(repo)["tests"].instructions == "A"

    def test_custom_filenames(self, tmp_path):
        (tmp_path / "SUBAGENTS.md").write_text(TESTS_B, encoding="utf-8")
        assert load_templates(tmp_path, ["SUBAGENTS.md"])["tests"].instructions == "B"
        assert load_templates(tmp_path)["tests"].instructions != "B"

    def test_project_instructions_joined_root_first(self, tmp_path):
        (tmp_path / ".git").mkdir()
        sub = tmp_path / "pkg"
        sub.mkdir()
        (tmp_path / "AGENTS.md").write_text("Root rules.\n", encoding="utf-8")
        (sub / "AGENTS.md").write_text("  \n", encoding="utf-8")
        (sub / "NOTES.md").write_text("Package rules.\n", encoding="utf-8")

        sources = discover_template_sources(sub, ["AGENTS.md", "NOTES.md"])
        assert project_instructions(sources) == "Root rules.\n\nPackage rules."
        assert project_instructions([]) is None
