"""Tests for the ingest-pdf command."""
import pytest

from schemeqa.ingestion import ingest_pdf


@pytest.fixture
def cli_services(services, monkeypatch):
    monkeypatch.setattr(ingest_pdf, "build_services", lambda config: services)
    return services


def test_ingests_new_scheme(cli_services, scholarship_pdf, capsys):
    ingest_pdf.main(["--scheme-id", "farm-credit", "--title", "Farm Credit", "--source", str(scholarship_pdf)])

    out = capsys.readouterr().out
    assert out.startswith("[INGEST-PDF] farm-credit <- ")
    assert cli_services.store.get_scheme("farm-credit").pdf_url == str(scholarship_pdf)
    assert cli_services.status("farm-credit")["totalChunks"] > 0


def test_reprocess_keeps_existing_title(cli_services, ingested, scheme, revised_pdf):
    ingest_pdf.main(["--scheme-id", scheme.id, "--source", str(revised_pdf), "--reprocess"])

    assert cli_services.store.get_scheme(scheme.id).title == "State Scholarship Scheme"
    contents = " ".join(c.content for c in cli_services.store.get_for_scheme(scheme.id))
    assert "instalments" in contents


def test_new_scheme_requires_title(cli_services, scholarship_pdf):
    with pytest.raises(SystemExit) as exc:
        ingest_pdf.main(["--scheme-id", "unknown", "--source", str(scholarship_pdf)])
    assert exc.value.code == 2


def test_failed_ingestion_exits_nonzero(cli_services, tmp_path):
    with pytest.raises(SystemExit) as exc:
        ingest_pdf.main(["--scheme-id", "farm-credit", "--title", "Farm Credit", "--source", str(tmp_path / "gone.pdf")])
    assert exc.value.code == 1


def test_keeps_stored_pdf_filename(cli_services, scheme, scholarship_pdf):
    cli_services.store.upsert_scheme(scheme.id, title=scheme.title, pdf_filename="scholarship-2024.pdf")

    ingest_pdf.main(["--scheme-id", scheme.id, "--source", str(scholarship_pdf)])

    assert cli_services.store.get_scheme(scheme.id).pdf_filename == "scholarship-2024.pdf"
    chunks = cli_services.store.get_for_scheme(scheme.id)
    assert chunks[0].metadata_dict()["fileName"] == "scholarship-2024.pdf"


def test_deleted_scheme_needs_restore(cli_services, scheme, scholarship_pdf):
    cli_services.store.delete_scheme(scheme.id)

    with pytest.raises(SystemExit) as exc:
        ingest_pdf.main(["--scheme-id", scheme.id, "--source", str(scholarship_pdf)])
    assert exc.value.code == 2
    assert cli_services.store.get_scheme(scheme.id).is_active is False

    ingest_pdf.main(["--scheme-id", scheme.id, "--source", str(scholarship_pdf), "--restore"])
    assert cli_services.store.require_scheme(scheme.id).is_active
    assert cli_services.status(scheme.id)["totalChunks"] > 0
