"""Extraction of the detail view from an FA(3) invoice document."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any

from ksef_gui.domain import RemoteServiceError

FA3_NAMESPACE = "http://crd.gov.pl/wzor/2025/06/25/13775/"

_LINE_FIELDS = {
    "nr": "NrWierszaFa",
    "name": "P_7",
    "unit": "P_8A",
    "qty": "P_8B",
    "unitPrice": "P_9A",
    "netAmount": "P_11",
    "grossAmount": "P_11A",
    "vatRate": "P_12",
    "exchangeRate": "KursWaluty",
}


def _namespace_of(root: ET.Element) -> str:
    if root.tag.startswith("{"):
        return root.tag[1:].split("}", 1)[0]
    return FA3_NAMESPACE


class _Reader:
    def __init__(self, namespace: str) -> None:
        self._ns = namespace

    def tag(self, name: str) -> str:
        return f"{{{self._ns}}}{name}" if self._ns else name

    def first(self, root: ET.Element, name: str) -> ET.Element | None:
        return next(root.iter(self.tag(name)), None)

    def text(self, parent: ET.Element | None, name: str) -> str | None:
        if parent is None:
            return None
        child = parent.find(self.tag(name))
        return child.text if child is not None else None

    def address(self, party: ET.Element | None) -> str | None:
        if party is None:
            return None
        address = party.find(self.tag("Adres"))
        if address is None:
            return None
        line1 = self.text(address, "AdresL1")
        line2 = self.text(address, "AdresL2")
        if line1 is None and line2 is None:
            return None
        return ", ".join(part for part in (line1, line2) if part)


def parse_invoice_details(xml: str) -> dict[str, Any]:
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as exc:
        raise RemoteServiceError(f"Invoice document is not valid XML: {exc}") from exc

    reader = _Reader(_namespace_of(root))
    header = reader.first(root, "Naglowek")
    fa = reader.first(root, "Fa")
    seller = reader.first(root, "Podmiot1")
    buyer = reader.first(root, "Podmiot2")
    period = fa.find(reader.tag("OkresFa")) if fa is not None else None
    form_code = header.find(reader.tag("KodFormularza")) if header is not None else None

    line_items = [
        {key: reader.text(row, element) for key, element in _LINE_FIELDS.items()}
        for row in root.iter(reader.tag("FaWiersz"))
    ]
    descriptions = [
        {"key": reader.text(entry, "Klucz"), "value": reader.text(entry, "Wartosc")}
        for entry in root.iter(reader.tag("DodatkowyOpis"))
    ]

    return {
        "createdAt": reader.text(header, "DataWytworzeniaFa"),
        "systemInfo": reader.text(header, "SystemInfo"),
        "schemaVersion": form_code.get("wersjaSchemy") if form_code is not None else None,
        "formCode": form_code.text if form_code is not None else None,
        "invoiceType": reader.text(fa, "RodzajFaktury"),
        "currency": reader.text(fa, "KodWaluty"),
        "periodFrom": reader.text(period, "P_6_Od"),
        "periodTo": reader.text(period, "P_6_Do"),
        "sellerAddress": reader.address(seller),
        "buyerAddress": reader.address(buyer),
        "netTotal": reader.text(fa, "P_13_1"),
        "vatTotal": reader.text(fa, "P_14_1"),
        "vatTotalCurrency": reader.text(fa, "P_14_1W"),
        "grossTotal": reader.text(fa, "P_15"),
        "lineItems": line_items,
        "additionalDescriptions": descriptions,
    }
