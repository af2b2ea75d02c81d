"""Sub-agent templates: built-in table plus overrides declared in AGENTS.md files.

Templates live in fenced ```subagents blocks inside project docs. Each block
is YAML with an ``agent`` list:

    ```subagents
    agent:
      - name: tests
        instructions: Run only the affected test module.
        skills: [pytest]
        model: gpt-4.1-mini
    ```

Later documents override earlier ones by ``name``. Documents can redefine a
template but never remove one.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .errors import ConfigError

logger = logging.getLogger(__name__)

FENCE_NAME = "subagents"
DEFAULT_TEMPLATE_FILES = ("AGENTS.md",)


@dataclass(frozen=True)
class AgentTemplate:
    name: str
    instructions: str = ""
    skills: tuple[str, ...] = ()
    model: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "instructions": self.instructions,
            "skills": list(self.skills),
            "model": self.model,
        }


@dataclass(frozen=True)
class TemplateSource:
    """One definition document: where it came from and its raw text."""

    origin: str
    text: str = field(repr=False)


BUILTIN_TEMPLATES: tuple[AgentTemplate, ...] = (
    AgentTemplate(
        name="inspect",
        instructions=(
            "Explore the codebase and summarize what you find. Stick to "
            "read-only commands (git diff, rg, ls, cat). Do not edit files."
        ),
    ),
    AgentTemplate(
        name="implement",
        instructions=(
            "Make a focused change with the smallest reasonable diff. Follow "
            "the repository's conventions, run the narrowest relevant tests "
            "or formatters, and report what changed and why."
        ),
    ),
    AgentTemplate(
        name="tests",
        instructions=(
            "Run the smallest set of tests that validates the change. Prefer "
            "scoped commands (one package, one test). Report the commands you "
            "ran and any failures."
        ),
    ),
    AgentTemplate(
        name="refactor",
        instructions=(
            "Refactor without changing behavior. Prefer mechanical edits and "
            "keep names and structure consistent with the surrounding file."
        ),
    ),
    AgentTemplate(
        name="docs",
        instructions=(
            "Bring the documentation in line with the code. Keep it concise "
            "and check every command and path you mention."
        ),
    ),
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def extract_fenced_blocks(text: str, fence: str = FENCE_NAME) -> list[str]:
    """Return the bodies of every ```<fence> block in *text*, in order.

    Blank blocks are skipped. An unterminated block is ignored.
    """
    opener = f"```{fence}"
    blocks: list[str] = []
    buf: list[str] = []
    in_block = False

    for line in text.splitlines():
        stripped = line.lstrip()
        if not in_block:
            if stripped.startswith(opener):
                in_block = True
                buf = []
            continue
        if stripped.startswith("```"):
            in_block = False
            body = "\n".join(buf)
            if body.strip():
                blocks.append(body + "\n")
            continue
        buf.append(line)

    return blocks


def _parse_entry(entry, where: str) -> AgentTemplate:
    if not isinstance(entry, dict):
        raise ConfigError(f"{where}: agent entry must be a mapping")

    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{where}: agent entry requires a non-empty 'name'")

    instructions = entry.get("instructions") or ""
    if not isinstance(instructions, str):
        raise ConfigError(f"{where}: 'instructions' of '{name}' must be a string")

    skills = entry.get("skills") or []
    if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
        raise ConfigError(f"{where}: 'skills' of '{name}' must be a list of strings")

    model = entry.get("model")
    if model is not None and not isinstance(model, str):
        raise ConfigError(f"{where}: 'model' of '{name}' must be a string")

    return AgentTemplate(
        name=name.strip(),
        instructions=instructions,
        skills=tuple(skills),
        model=model or None,
    )


def parse_template_document(text: str, origin: str = "<document>") -> list[AgentTemplate]:
    """Parse every template declared in one document.

    Raises ConfigError if any block is malformed; the document is then
    treated as a whole and none of its entries apply.
    """
    import yaml

    templates: list[AgentTemplate] = []
    for index, block in enumerate(extract_fenced_blocks(text), start=1):
        where = f"{origin} block {index}"
        try:
            data = yaml.safe_load(block)
        except yaml.YAMLError as e:
            raise ConfigError(f"{where}: invalid YAML: {e}") from e

        if data is None:
            continue
        if not isinstance(data, dict):
            raise ConfigError(f"{where}: block must be a mapping with an 'agent' list")

        agents = data.get("agent", [])
        if agents is None:
            continue
        if not isinstance(agents, list):
            raise ConfigError(f"{where}: 'agent' must be a list")

        templates.extend(_parse_entry(entry, where) for entry in agents)

    return templates


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve(sources: Iterable[TemplateSource]) -> dict[str, AgentTemplate]:
    """Merge built-ins with *sources*, applied in the given order.

    Malformed documents are logged and skipped.
    """
    templates: dict[str, AgentTemplate] = {t.name: t for t in BUILTIN_TEMPLATES}

    for source in sources:
        try:
            parsed = parse_template_document(source.text, source.origin)
        except ConfigError as e:
            logger.warning("Skipping sub-agent templates in %s: %s", source.origin, e)
            continue
        for template in parsed:
            if template.name in templates:
                logger.debug("Template '%s' overridden by %s", template.name, source.origin)
            templates[template.name] = template

    return templates


def find_project_root(cwd: Path) -> Path:
    """Closest ancestor of *cwd* (inclusive) holding a .git entry, else *cwd*."""
    cwd = cwd.resolve()
    for candidate in (cwd, *cwd.parents):
        if (candidate / ".git").exists():
            return candidate
    return cwd


def discover_template_sources(
    cwd: str | Path,
    filenames: Iterable[str] = DEFAULT_TEMPLATE_FILES,
) -> list[TemplateSource]:
    """Collect template documents from the project root down to *cwd*."""
    cwd = Path(cwd).resolve()
    root = find_project_root(cwd)
    filenames = tuple(filenames)

    chain = [cwd]
    if cwd != root:
        chain = [p for p in reversed(cwd.parents) if p == root or root in p.parents]
        chain.append(cwd)

    sources: list[TemplateSource] = []
    for directory in chain:
        for filename in filenames:
            path = directory / filename
            if not path.is_file():
                continue
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Could not read %s: %s", path, e)
                continue
            sources.append(TemplateSource(origin=str(path), text=text))

    return sources


def load_templates(
    cwd: str | Path,
    filenames: Iterable[str] = DEFAULT_TEMPLATE_FILES,
) -> dict[str, AgentTemplate]:
    """Resolve the templates visible from *cwd*."""
    return resolve(discover_template_sources(cwd, filenames))


def project_instructions(sources: Iterable[TemplateSource]) -> str | None:
    """Project doc text handed to every sub-agent, root document first."""
    texts = [s.text.strip() for s in sources if s.text.strip()]
    return "\n\n".join(texts) or None
