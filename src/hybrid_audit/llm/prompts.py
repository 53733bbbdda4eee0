import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "data" / "prompts"
PLACEHOLDER_RE = re.compile(r'\{\{(\w+)\}\}')


@lru_cache()
def _load_prompt_data(name: str) -> Dict[str, Any]:
    # Prioritize .yaml for structured prompts
    yaml_path = PROMPTS_DIR / f"{name}.yaml"
    if yaml_path.exists():
        with open(yaml_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    # Fallback to .md
    md_path = PROMPTS_DIR / f"{name}.md"
    if md_path.exists():
        with open(md_path, "r", encoding="utf-8") as f:
            return {"content": f.read()}

    raise FileNotFoundError(f"Prompt {name} not found as .yaml or .md")


def load_prompt(name: str) -> str:
    return _load_prompt_data(name).get("content", "")


def load_system_instruction(name: str) -> Optional[str]:
    return _load_prompt_data(name).get("system")


def interpolate_prompt(template: str, variables: Mapping[str, Any]) -> str:
    """Replaces {{name}} placeholders; missing or None values render as N/A."""
    def replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "N/A" if value is None else str(value)
    return PLACEHOLDER_RE.sub(replace, template)


def render_prompt(name: str, variables: Optional[Mapping[str, Any]] = None) -> str:
    merged = {"output_format": load_prompt("finding_output_format")}
    merged.update(variables or {})
    return interpolate_prompt(load_prompt(name), merged)


def format_array_for_prompt(items: List[str], max_items: int = 10) -> str:
    if not items:
        return "None"
    lines = "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items[:max_items]))
    if len(items) > max_items:
        lines += f"\n... and {len(items) - max_items} more"
    return lines


RELEVANT_HEADERS = (
    "content-type",
    "cache-control",
    "x-robots-tag",
    "link",
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
)


def format_headers_for_prompt(headers: Dict[str, str]) -> str:
    lines = [f"{name}: {headers[name]}" for name in RELEVANT_HEADERS if headers.get(name)]
    return "\n".join(lines) if lines else "No relevant headers found"


def format_headings_for_prompt(headings: List[Any]) -> str:
    if not headings:
        return "No headings found"
    return "\n".join(
        f"{'  ' * (h.level - 1)}H{h.level}: {h.text[:80]}" for h in headings[:15]
    )


def format_opportunities_for_prompt(opportunities: List[Any]) -> str:
    if not opportunities:
        return "No significant opportunities identified"
    lines = []
    for o in opportunities[:8]:
        savings = []
        if o.savings_ms:
            savings.append(f"{round(o.savings_ms)}ms")
        if o.savings_bytes:
            savings.append(f"{round(o.savings_bytes / 1024)}KB")
        suffix = f" (potential savings: {', '.join(savings)})" if savings else ""
        lines.append(f"- {o.title}{suffix}")
    return "\n".join(lines)
