#!/usr/bin/env python3
"""
Run one audit from the command line and print a summary.

Usage:
  python scripts/run_audit.py https://example.com --crawl-depth shallow --visual-mode none
  python scripts/run_audit.py https://shop.example.com --pdp https://shop.example.com/p/1 --json report.json

Provider keys are read from the environment / .env (OPENAI_API_KEY, GEMINI_API_KEY,
PSI_API_KEY). Without any provider key only deterministic findings are produced.
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hybrid_audit.llm.registry import build_registry
from hybrid_audit.log import setup_logging
from hybrid_audit.pipeline.run import AuditPipeline
from hybrid_audit.schemas.findings import MicroAuditConfig
from hybrid_audit.schemas.report import AuditReport, AuditRequest, Layer1Config

PRIORITY_STYLES = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "dim"}

console = Console()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a hybrid website audit")
    parser.add_argument("url")
    parser.add_argument("--pdp", dest="pdp_url", help="Product detail page to audit as well")
    parser.add_argument("--crawl-depth", choices=["surface", "shallow", "deep"], default="surface")
    parser.add_argument("--security-scope", choices=["headers_only", "full"], default="headers_only")
    parser.add_argument("--visual-mode", choices=["url_context", "rendered", "both", "none"], default="url_context")
    parser.add_argument("--no-psi", action="store_true", help="Skip PageSpeed Insights")
    parser.add_argument("--no-codebase-peek", action="store_true")
    parser.add_argument("--max-findings", type=int, default=7, help="Per audit type; 0 for no cap")
    parser.add_argument("--json", dest="json_path", help="Write the full report to this file")
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> AuditRequest:
    return AuditRequest(
        url=args.url,
        pdp_url=args.pdp_url,
        layer1=Layer1Config(
            psi_enabled=not args.no_psi,
            security_scope=args.security_scope,
            crawl_depth=args.crawl_depth,
        ),
        micro_audits=MicroAuditConfig(
            visual_mode=args.visual_mode,
            enable_codebase_peek=not args.no_codebase_peek,
            enable_pdp=bool(args.pdp_url),
            max_findings_per_audit=args.max_findings,
        ),
    )


def print_report(report: AuditReport):
    console.rule(f"Audit {report.audit_id}")
    console.print(f"URL: {report.url}  ({report.duration_ms}ms)")
    if report.error:
        console.print(f"[bold red]Audit failed:[/] {report.error}")

    if report.layer3:
        audits = Table(title="Micro-audits")
        audits.add_column("Audit")
        audits.add_column("Status")
        audits.add_column("Provider")
        audits.add_column("Findings", justify="right")
        for audit_type, result in report.layer3.audits.items():
            status = f"[red]failed[/] {result.error}" if result.error else "[green]ok[/]"
            audits.add_row(audit_type, status, result.provider or "-", str(len(result.findings)))
        for audit_type in report.layer3.skipped_audits:
            audits.add_row(audit_type, "[dim]skipped[/]", "-", "-")
        console.print(audits)
        console.print(f"Estimated cost: ${report.layer3.total_cost:.4f}")

    findings = Table(title="Findings")
    findings.add_column("Priority")
    findings.add_column("Source")
    findings.add_column("Finding")
    findings.add_column("Fix")
    for f in report.findings:
        findings.add_row(f"[{PRIORITY_STYLES[f.priority]}]{f.priority}[/]", f.source, f.finding, f.fix)
    console.print(findings)

    for gap in report.explicit_gaps:
        console.print(f"[yellow]Gap:[/] {gap}")


def main():
    load_dotenv()
    setup_logging()
    args = parse_args()

    pipeline = AuditPipeline(build_registry())
    report = asyncio.run(pipeline.run(build_request(args)))
    print_report(report)

    if args.json_path:
        with open(os.path.expanduser(args.json_path), "w") as f:
            f.write(report.model_dump_json(indent=2))
        console.print(f"Report written to {args.json_path}")

    sys.exit(1 if report.error else 0)


if __name__ == "__main__":
    main()
