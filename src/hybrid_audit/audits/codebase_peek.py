import re
from typing import Any, Dict, List

from ..llm.prompts import format_array_for_prompt
from ..schemas.findings import MicroAuditFinding
from .base import AuditInputs, MicroAudit

HEAD_RE = re.compile(r'<head[^>]*>([\s\S]*?)</head>', re.IGNORECASE)
SRC_SCRIPT_RE = re.compile(r'<script[^>]*src=[^>]*>', re.IGNORECASE)
SCRIPT_BLOCK_RE = re.compile(r'<script[^>]*>[\s\S]*?</script>', re.IGNORECASE)
STYLE_BLOCK_RE = re.compile(r'<style[^>]*>[\s\S]*?</style>', re.IGNORECASE)
INLINE_STYLE_RE = re.compile(r'style=["\'][^"\']+["\']', re.IGNORECASE)
DEPRECATED_ELEMENTS = ("<font", "<center", "<marquee", "<blink")
PROMPT_SOURCE_CHARS = 4000
LARGE_HTML_BYTES = 500000


def count_blocking_head_scripts(html: str) -> int:
    head = HEAD_RE.search(html)
    if not head:
        return 0
    scripts = SRC_SCRIPT_RE.findall(head.group(1))
    return sum(1 for s in scripts if "async" not in s and "defer" not in s)


def detect_frameworks(html: str) -> List[str]:
    frameworks = []
    if "react" in html or "__NEXT_DATA__" in html:
        frameworks.append("React/Next.js")
    if "ng-" in html or "angular" in html:
        frameworks.append("Angular")
    if "vue" in html or "data-v-" in html:
        frameworks.append("Vue.js")
    if "jquery" in html or "jQuery" in html:
        frameworks.append("jQuery")
    return frameworks


def analyze_html_source(html: str) -> List[str]:
    """Cheap pattern checks whose results are handed to the model as hints."""
    issues = []

    inline_styles = len(INLINE_STYLE_RE.findall(html))
    if inline_styles > 10:
        issues.append(f"Excessive inline styles found ({inline_styles} occurrences)")

    inline_scripts = [
        s for s in SCRIPT_BLOCK_RE.findall(html)
        if "src=" not in s and 'type="application/ld+json"' not in s
    ]
    if len(inline_scripts) > 3:
        issues.append(f"Multiple inline scripts found ({len(inline_scripts)})")

    lowered = html.lower()
    for element in DEPRECATED_ELEMENTS:
        if element in lowered:
            issues.append(f"Deprecated element found: {element}")

    blocking = count_blocking_head_scripts(html)
    if blocking > 2:
        issues.append(f"Render-blocking scripts in head ({blocking})")

    if "document.write" in html:
        issues.append("document.write() detected (blocks parsing)")

    inline_css = sum(len(block) for block in STYLE_BLOCK_RE.findall(html))
    if inline_css > 10000:
        issues.append(f"Large inline CSS ({round(inline_css / 1024)}KB)")

    frameworks = detect_frameworks(html)
    if frameworks:
        issues.append(f"Detected frameworks: {', '.join(frameworks)}")

    return issues


class CodebasePeekAudit(MicroAudit):
    audit_type = "codebase-peek"
    prompt_name = "codebase_peek"
    id_prefix = "code"
    category = "technical"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        html = inputs.layer1.evidence.html.content
        return {
            "htmlSource": html[:PROMPT_SOURCE_CHARS],
            "detectedIssues": format_array_for_prompt(analyze_html_source(html)),
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        html = inputs.layer1.evidence.html.content
        findings = []

        blocking = count_blocking_head_scripts(html)
        if blocking > 2:
            findings.append(self.finding(
                1, "Render-blocking scripts in document head",
                f"{blocking} scripts without async/defer in <head>",
                "Render-blocking scripts delay page rendering, hurting LCP and user experience",
                "Add async or defer attributes to scripts, or move them to the end of body",
                "high",
            ))

        if "document.write" in html:
            findings.append(self.finding(
                2, "document.write() detected",
                "document.write found in page source",
                "document.write blocks HTML parsing and can significantly slow down page loading",
                "Replace document.write with modern DOM manipulation methods",
                "medium",
            ))

        inline_styles = len(INLINE_STYLE_RE.findall(html))
        if inline_styles > 20:
            findings.append(self.finding(
                3, "Excessive inline styles",
                f"{inline_styles} inline style attributes found",
                "Inline styles increase HTML size and make styling harder to maintain",
                "Move inline styles to external CSS files or CSS-in-JS solutions",
                "low",
            ))

        if not inputs.homepage.charset:
            findings.append(self.finding(
                4, "Missing character encoding declaration",
                "No charset meta tag found",
                "Missing charset can cause character encoding issues and security vulnerabilities",
                'Add <meta charset="utf-8"> as the first element in <head>',
                "medium",
            ))

        html_bytes = inputs.layer1.evidence.html.content_bytes or len(html)
        if html_bytes > LARGE_HTML_BYTES:
            findings.append(self.finding(
                5, "Large HTML document size",
                f"HTML size: {round(html_bytes / 1024)}KB",
                "Large HTML documents take longer to download and parse, affecting performance",
                "Consider server-side rendering optimizations, lazy loading, or pagination",
                "medium",
            ))

        return findings
