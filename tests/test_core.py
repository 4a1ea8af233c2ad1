from __future__ import annotations

from datetime import datetime

import pytest

from conftest import FA3, make_items

from ksef_gui.application.details import parse_invoice_details
from ksef_gui.core.dates import parse_date
from ksef_gui.core.files import (
    build_file_name,
    job_workdir,
    publish_file,
    resolve_output_dir,
    sanitize_file_name,
)
from ksef_gui.core.filters import build_filters, resolve_subject_type
from ksef_gui.core.schema import DownloadRequest
from ksef_gui.core.settings import Settings
from ksef_gui.domain import (
    FORMAT_RAW,
    FORMAT_RENDERED,
    FORMAT_SUMMARY,
    RemoteServiceError,
    ResultItem,
    SearchQuery,
    ValidationError,
)

NOW = datetime(2024, 3, 15, 14, 30)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("today", datetime(2024, 3, 15)),
        ("yesterday", datetime(2024, 3, 14)),
        ("thismonth", datetime(2024, 3, 1)),
        ("lastmonth", datetime(2024, 2, 1)),
        ("7 days ago", datetime(2024, 3, 8)),
        ("-3d", datetime(2024, 3, 12)),
        ("2024-01-05", datetime(2024, 1, 5)),
        ("2024-01-05T10:15:00", datetime(2024, 1, 5, 10, 15)),
        ("05.01.2024", datetime(2024, 1, 5)),
        ("2024/01/05", datetime(2024, 1, 5)),
    ],
)
def test_parse_date_accepts_keywords_and_layouts(raw, expected):
    assert parse_date(raw, now=NOW) == expected


def test_parse_date_rejects_garbage():
    with pytest.raises(ValidationError, match="Could not parse date string: someday"):
        parse_date("someday", now=NOW)
    with pytest.raises(ValidationError):
        parse_date("", now=NOW)


def test_subject_aliases_and_filters():
    assert resolve_subject_type("buyer") == "Subject2"
    assert resolve_subject_type("subject1") == "Subject1"
    with pytest.raises(ValidationError, match="Invalid SubjectType: Nobody"):
        resolve_subject_type("Nobody")

    filters = build_filters(
        SearchQuery(subject_type="1", date_from="thismonth", date_to=None, date_type="invoicing"),
        now=NOW,
    )
    assert filters.to_payload() == {
        "subjectType": "Subject1",
        "dateRange": {"dateType": "Invoicing", "from": "2024-03-01T00:00:00"},
    }


def test_bad_date_type_fails_before_dates_are_parsed():
    with pytest.raises(ValidationError, match="Invalid DateType: Whenever"):
        build_filters(SearchQuery(subject_type="Subject2", date_from="garbage", date_type="Whenever"))


def test_file_names():
    assert sanitize_file_name('ACME "Best" Sp. z o.o./PL') == "ACME__Best__Sp._z_o.o._PL"
    assert len(sanitize_file_name("x" * 200)) == 60

    item = make_items(1)[0]
    assert build_file_name(item) == "KSEF-0000"
    assert build_file_name(item, use_invoice_number=True) == "FV_0_2024"
    assert build_file_name(item, custom=True) == "2024-01-15-ACME_Sp._z_o.o.-PLN-KSEF-0000"
    assert build_file_name(ResultItem(ksef_number="K"), custom=True) == "unknown-unknown-PLN-K"


def test_resolve_output_dir(tmp_path):
    assert resolve_output_dir("", tmp_path) == tmp_path.resolve()
    assert resolve_output_dir(str(tmp_path / "x"), tmp_path, nip="123", per_identity=True) == (
        tmp_path / "x" / "123"
    ).resolve()
    assert resolve_output_dir(None, tmp_path, nip="123", per_identity=False) == tmp_path.resolve()


def test_publish_file_replaces_target(tmp_path):
    source = tmp_path / "staged.xml"
    source.write_text("new", encoding="utf-8")
    target = tmp_path / "out" / "invoice.xml"
    target.parent.mkdir()
    target.write_text("old", encoding="utf-8")

    assert publish_file(source, target) == target
    assert target.read_text(encoding="utf-8") == "new"
    assert not source.exists()


def test_job_workdir_is_removed_even_on_error():
    with pytest.raises(RuntimeError):
        with job_workdir() as workdir:
            (workdir / "partial.xml").write_text("x", encoding="utf-8")
            raise RuntimeError("boom")
    assert not workdir.exists()


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("KSEF_GUI_CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("KSEF_GUI_PORT", "9000")
    monkeypatch.setenv("KSEF_GUI_LAN", "yes")
    monkeypatch.setenv("KSEF_GUI_PDF_COMMAND", "npx ksef-pdf")

    settings = Settings.from_env()

    assert settings.port == 9000
    assert settings.host == "0.0.0.0"
    assert settings.pdf_command == ("npx", "ksef-pdf")
    assert settings.token_store_path == tmp_path / "tokens.json"

    overridden = settings.with_overrides(port=None, lan=False, output_dir=str(tmp_path / "out"))
    assert overridden.port == 9000
    assert overridden.host == "127.0.0.1"
    assert overridden.output_dir == tmp_path / "out"


def test_invoice_details_extraction():
    xml = f"""<Faktura xmlns="{FA3}">
      <Naglowek>
        <KodFormularza kodSystemowy="FA (3)" wersjaSchemy="1-0E">FA</KodFormularza>
        <DataWytworzeniaFa>2024-01-15T10:00:00Z</DataWytworzeniaFa>
        <SystemInfo>Kasa 1</SystemInfo>
      </Naglowek>
      <Podmiot1><Adres><AdresL1>ul. Prosta 1</AdresL1><AdresL2>00-001 Warszawa</AdresL2></Adres></Podmiot1>
      <Podmiot2><Adres><AdresL1>ul. Krzywa 2</AdresL1></Adres></Podmiot2>
      <Fa>
        <KodWaluty>EUR</KodWaluty>
        <OkresFa><P_6_Od>2024-01-01</P_6_Od><P_6_Do>2024-01-31</P_6_Do></OkresFa>
        <P_13_1>100.00</P_13_1>
        <P_14_1>23.00</P_14_1>
        <P_15>123.00</P_15>
        <RodzajFaktury>VAT</RodzajFaktury>
        <DodatkowyOpis><Klucz>PO</Klucz><Wartosc>4711</Wartosc></DodatkowyOpis>
        <FaWiersz><NrWierszaFa>1</NrWierszaFa><P_7>Consulting</P_7><P_8B>2</P_8B><P_11>100.00</P_11><P_12>23</P_12></FaWiersz>
      </Fa>
    </Faktura>"""

    details = parse_invoice_details(xml)

    assert details["formCode"] == "FA"
    assert details["schemaVersion"] == "1-0E"
    assert details["systemInfo"] == "Kasa 1"
    assert details["currency"] == "EUR"
    assert details["periodFrom"] == "2024-01-01"
    assert details["sellerAddress"] == "ul. Prosta 1, 00-001 Warszawa"
    assert details["buyerAddress"] == "ul. Krzywa 2"
    assert details["grossTotal"] == "123.00"
    assert details["vatTotalCurrency"] is None
    assert details["invoiceType"] == "VAT"
    assert details["lineItems"] == [
        {
            "nr": "1",
            "name": "Consulting",
            "unit": None,
            "qty": "2",
            "unitPrice": None,
            "netAmount": "100.00",
            "grossAmount": None,
            "vatRate": "23",
            "exchangeRate": None,
        }
    ]
    assert details["additionalDescriptions"] == [{"key": "PO", "value": "4711"}]


def test_invoice_details_rejects_invalid_xml():
    with pytest.raises(RemoteServiceError):
        parse_invoice_details("<Faktura")


def test_download_request_maps_export_flags_to_formats():
    job = DownloadRequest.model_validate(
        {"outputDir": "/tmp/out", "exportXml": False, "exportJson": True, "exportPdf": True, "selectedIndices": [2, 0]}
    ).to_job()

    assert job.formats == frozenset({FORMAT_SUMMARY, FORMAT_RENDERED})
    assert job.selected_indices == [2, 0]
    assert job.target_dir == "/tmp/out"

    assert DownloadRequest.model_validate({}).to_job().formats == frozenset({FORMAT_RAW})
