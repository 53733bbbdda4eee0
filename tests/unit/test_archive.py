from hybrid_audit.schemas.evidence import RobotsEvidence
from hybrid_audit.store.archive import (
    EvidenceRepository,
    EvidenceStore,
    extract_evidence_quotes,
    validate_finding_evidence,
)


def test_store_records_signals_outputs_and_errors():
    """
    WHY: The archive is the debugging record of a run; nothing it is given may be lost.
    HOW: Store a pydantic signal, a stage output, parse counters, an error and a report.
    EXPECTED: Everything is readable back and reflected in the summary.
    """
    store = EvidenceStore("a1", "https://acme.test/")
    store.store_signal("robots", RobotsEvidence(url="https://acme.test/", normalized_url="https://acme.test/", content="User-agent: *", status="200"))
    store.store_stage_output("on-page-seo", "[]", provider="gemini", model="gemini-2.0-flash")
    store.record_parsed_finding(2)
    store.record_dropped_finding("not an object")
    store.record_dropped_finding("not an object", finding_title="Broken")
    store.record_error("layer1-sitemap", "HTTP 403")

    assert store.get_signal("robots")["content"] == "User-agent: *"
    assert store.get_stage_output("on-page-seo").provider == "gemini"
    assert store.archive.parse_status.drop_reasons == {"not an object": 2}
    assert store.archive.parse_status.parse_errors == ['Dropped "Broken": not an object']
    assert store.has_errors()

    summary = store.get_summary()
    assert summary.signals_gathered == 1
    assert summary.findings_parsed == 2
    assert summary.findings_dropped == 2
    assert summary.completed is False

    store.store_final_report({"audit_id": "a1"})
    assert store.get_summary().completed is True


def test_get_archive_is_a_copy():
    store = EvidenceStore("a1", "https://acme.test/")
    store.store_signal("headers", {"status": "200"})

    snapshot = store.get_archive()
    snapshot.raw_signals["headers"]["status"] = "500"

    assert store.get_signal("headers") == {"status": "200"}


def test_repository_create_get_delete():
    repository = EvidenceRepository()
    repository.create("a1", "https://acme.test/")
    repository.create("a2", "https://other.test/")

    assert len(repository) == 2
    assert repository.get("a1").archive.url == "https://acme.test/"
    assert repository.delete("a1") is True
    assert repository.delete("a1") is False
    assert repository.get("a1") is None
    assert [s.id for s in repository.active_summaries()] == ["a2"]


def test_extract_evidence_quotes():
    output = (
        "Finding: No canonical\n"
        "Evidence: [HTML] <head> has no rel=canonical\n"
        "Evidence: ROBOTS Disallow: /\n"
        "Fix: add one\n"
    )
    quotes = extract_evidence_quotes(output)

    assert [(q.type, q.quote) for q in quotes] == [
        ("HTML", "<head> has no rel=canonical"),
        ("ROBOTS", "Disallow: /"),
    ]
    assert "Finding: No canonical" in quotes[0].context


def test_validate_finding_evidence_reports_missing_markers():
    complete = "Finding: x\nEvidence: y\nWhy it matters: z\nFix: w"
    assert validate_finding_evidence(complete) == []
    assert validate_finding_evidence("finding: x\nfix: w") == ["Evidence:", "Why it matters:"]
