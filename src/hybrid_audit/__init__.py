"""Hybrid Audit - a concurrent website audit pipeline.

Collects raw signals for a site (robots.txt, sitemap, headers, homepage
markup, PageSpeed metrics), extracts a structured page snapshot and runs a
batch of micro-audits against generation providers, always returning a
best-effort report.

Components:
- retrieval: bounded fetching, redirect resolution, signal collectors
- collectors: security header scoring, PageSpeed, shallow crawl
- pipeline: layer 1 / layer 3 orchestration and the end-to-end run
- llm: provider registry, OpenAI and Gemini providers, prompts
- audits: deterministic rules and provider-backed micro-audits
- store: per-run evidence archive
- mlops: MLflow tracing
"""
