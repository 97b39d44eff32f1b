from xml.sax.saxutils import escape

import requests

from rndc_bridge.config import DEFAULT_RNDC_URL
from rndc_bridge.sync.rndc_client import (
    RndcClient,
    build_envelope,
    extract_query_data,
    interpret_result,
    normalize_ws_url,
)


class FakeResponse:
    def __init__(self, status_code=200, text="", reason="OK"):
        self.status_code = status_code
        self.text = text
        self.reason = reason

    @property
    def ok(self):
        return 200 <= self.status_code < 400


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, timeout=None):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def soap(result_xml: str) -> str:
    return (
        '<?xml version="1.0"?>'
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/" '
        'xmlns:NS1="urn:BPMServicesIntf-IBPMServices">'
        "<SOAP-ENV:Body><NS1:AtenderMensajeRNDCResponse>"
        f"<return>{escape(result_xml)}</return>"
        "</NS1:AtenderMensajeRNDCResponse></SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )


def client(*responses):
    return RndcClient(session=FakeSession(responses), backoff_seconds=0)


def test_url_gets_soap_suffix():
    assert normalize_ws_url("http://rndc.example:8080") == "http://rndc.example:8080/soap/IBPMServices"
    assert normalize_ws_url("http://rndc.example:8080/") == "http://rndc.example:8080/soap/IBPMServices"
    assert normalize_ws_url(None) == DEFAULT_RNDC_URL


def test_envelope_strips_declaration_and_escapes_request():
    envelope = build_envelope("<?xml version='1.0' encoding='iso-8859-1' ?>\n<root><a>1</a></root>")
    assert "&lt;root&gt;&lt;a&gt;1&lt;/a&gt;&lt;/root&gt;" in envelope
    assert "iso-8859-1" not in envelope


def test_send_accepts_ingresoid():
    rndc = client(FakeResponse(text=soap("<?xml version='1.0' encoding='iso-8859-1' ?><root><ingresoid>98765</ingresoid></root>")))
    response = rndc.send("<root/>", "http://rndc.example")

    assert response.success
    assert response.code == "98765"
    assert response.message == "Registro aceptado. IngresoID: 98765"
    post = rndc.session.posts[0]
    assert post["url"] == "http://rndc.example/soap/IBPMServices"
    assert post["headers"]["SOAPAction"] == "urn:BPMServicesIntf-IBPMServices#AtenderMensajeRNDC"


def test_error_message_code_is_extracted():
    result = interpret_result("<root><ErrorMSG>Error DUP020: Remesa ya cumplida</ErrorMSG></root>")
    assert not result.success
    assert result.code == "DUP020"
    assert result.message == "Error DUP020: Remesa ya cumplida"

    plain = interpret_result("<root><errormsg>Usuario no autorizado</errormsg></root>")
    assert plain.code == "ERROR"


def test_respuesta_codes():
    assert interpret_result("<root><respuesta><codigo>00</codigo><mensaje>ok</mensaje></respuesta></root>").success
    rejected = interpret_result("<root><respuesta><codigo>15</codigo></respuesta></root>")
    assert (rejected.success, rejected.code, rejected.message) == (False, "15", "Sin mensaje")


def test_unrecognised_and_empty_answers():
    assert interpret_result("<root><otro>1</otro></root>").code == "UNKNOWN"
    assert interpret_result("").code == "EMPTY"
    assert interpret_result("<root><broken>").code == "PARSE_ERROR"


def test_http_error_is_reported_not_raised():
    response = client(FakeResponse(status_code=500, text="boom", reason="Internal Server Error")).send("<root/>")
    assert (response.success, response.code) == (False, "HTTP_500")


def test_connection_errors_are_retried_then_reported():
    rndc = client(
        requests.ConnectionError("refused"),
        requests.ConnectionError("refused"),
        requests.ConnectionError("refused"),
    )
    response = rndc.send("<root/>")
    assert response.code == "ERROR"
    assert response.message.startswith("Error de conexión")
    assert len(rndc.session.posts) == 3


def test_transient_gateway_error_recovers():
    rndc = client(FakeResponse(status_code=503), FakeResponse(text=soap("<root><ingresoid>1</ingresoid></root>")))
    assert rndc.send("<root/>").success


def test_unparsable_envelope():
    assert client(FakeResponse(text="not xml at all")).send("<root/>").code == "PARSE_ERROR"


def test_query_extracts_first_document_upper_cased():
    answer = (
        "<root><documento><ingresoid>555</ingresoid><fechaing>2024/06/10</fechaing>"
        "<cantidadcargada>32000</cantidadcargada></documento>"
        "<documento><ingresoid>556</ingresoid></documento></root>"
    )
    result = client(FakeResponse(text=soap(answer))).query("<root/>")
    assert result.success
    assert result.data == {"INGRESOID": "555", "FECHAING": "2024/06/10", "CANTIDADCARGADA": "32000"}


def test_query_resultado_wrapper():
    assert extract_query_data("<root><resultado><CantidadCargada>10</CantidadCargada></resultado></root>") == {
        "CANTIDADCARGADA": "10"
    }


def test_failed_query_has_message():
    result = client(FakeResponse(text=soap("<root><ErrorMSG>Error CON001: no existe</ErrorMSG></root>"))).query("<root/>")
    assert not result.success
    assert result.data == {}
    assert result.message == "Error CON001: no existe"


def test_ping_states():
    assert client(FakeResponse(status_code=405)).ping("http://x")["status"] == "online"
    assert client(FakeResponse(status_code=500)).ping("http://x")["status"] == "offline"
    assert client(requests.Timeout("slow")).ping("http://x")["status"] == "timeout"
    assert client(requests.ConnectionError("down")).ping("http://x")["status"] == "offline"
