"""
SOAP transport for the RNDC web service.

Every registry operation is a single SOAP 1.1 call, AtenderMensajeRNDC, whose <Request> carries
the operation XML as escaped text and whose <return> carries the answer the same way.
Transport failures never raise out of send(); they come back as an unsuccessful RndcResponse
so a batch keeps going record by record.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import time
import xml.etree.ElementTree as ET
from typing import Any, Optional
from xml.sax.saxutils import escape

import requests

from rndc_bridge.config import DEFAULT_RNDC_URL
from rndc_bridge.domain.models import QueryResult, RndcResponse

logger = logging.getLogger(__name__)

SOAP_PATH = "/soap/IBPMServices"
SOAP_ACTION = "urn:BPMServicesIntf-IBPMServices#AtenderMensajeRNDC"
PING_URL = "https://rndc.mintransporte.gov.co/MenuPrincipal/tablogin/loginWebService.asmx"
SUCCESS_CODES = {"00", "0", "000"}
RETRYABLE_STATUS = {502, 503, 504}

_DECLARATION = re.compile(r"<\?xml[^?]*\?>\s*", re.IGNORECASE)
_ERROR_CODE = re.compile(r"error\s+(\w+):", re.IGNORECASE)

SOAP_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"
               xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
               xmlns:xsd="http://www.w3.org/2001/XMLSchema"
               xmlns:soapenc="http://schemas.xmlsoap.org/soap/encoding/"
               xmlns:tns="urn:BPMServicesIntf-IBPMServices">
  <soap:Body soap:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
    <tns:AtenderMensajeRNDC>
      <Request xsi:type="xsd:string">{request}</Request>
    </tns:AtenderMensajeRNDC>
  </soap:Body>
</soap:Envelope>"""


def normalize_ws_url(url: Optional[str]) -> str:
    url = (url or DEFAULT_RNDC_URL).strip()
    if SOAP_PATH not in url:
        url = url.rstrip("/") + SOAP_PATH
    return url


def strip_declaration(xml_text: str) -> str:
    return _DECLARATION.sub("", xml_text or "").strip()


def build_envelope(xml_request: str) -> str:
    return SOAP_ENVELOPE.format(request=escape(strip_declaration(xml_request)))


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child(element: ET.Element, *names: str) -> Optional[ET.Element]:
    for name in names:
        for child in element:
            if _local(child.tag) == name:
                return child
    return None


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def extract_result(envelope_xml: str) -> str:
    """
    Pulls the operation answer out of a SOAP response.
    Raises ET.ParseError when the envelope itself is not XML.
    """
    envelope = ET.fromstring(strip_declaration(envelope_xml))
    body = _child(envelope, "Body")
    if body is None:
        return ""
    response = _child(body, "AtenderMensajeRNDCResponse")
    if response is None:
        return ""
    result = _child(response, "return", "AtenderMensajeRNDCResult")
    text = _text(result)
    # Some gateways double-escape the payload.
    if "<" not in text and "&lt;" in text:
        text = html.unescape(text)
    return text


def _parse_root(result_xml: str) -> Optional[ET.Element]:
    root = ET.fromstring(strip_declaration(result_xml))
    return root if _local(root.tag) == "root" else None


def interpret_result(result_xml: str) -> RndcResponse:
    if not result_xml:
        return RndcResponse(success=False, code="EMPTY", message="Respuesta vacía del servidor")
    try:
        root = _parse_root(result_xml)
    except ET.ParseError:
        return RndcResponse(
            success=False, code="PARSE_ERROR", message="Error al parsear respuesta del RNDC", raw_xml=result_xml
        )
    if root is None:
        return RndcResponse(success=False, code="UNKNOWN", message="Respuesta no reconocida", raw_xml=result_xml)

    ingreso_id = _text(_child(root, "ingresoid"))
    if ingreso_id:
        return RndcResponse(
            success=True, code=ingreso_id, message=f"Registro aceptado. IngresoID: {ingreso_id}", raw_xml=result_xml
        )

    documento = _child(root, "documento")
    if documento is not None and _text(_child(documento, "ingresoid")):
        code = _text(_child(documento, "ingresoid"))
        return RndcResponse(success=True, code=code, message=f"Consulta exitosa. IngresoID: {code}", raw_xml=result_xml)

    error_msg = _text(_child(root, "ErrorMSG", "errormsg"))
    if error_msg:
        match = _ERROR_CODE.search(error_msg)
        code = match.group(1).upper() if match else "ERROR"
        return RndcResponse(success=False, code=code, message=error_msg, raw_xml=result_xml)

    respuesta = _child(root, "respuesta")
    if respuesta is not None:
        code = _text(_child(respuesta, "codigo")) or "000"
        message = _text(_child(respuesta, "mensaje")) or "Sin mensaje"
        return RndcResponse(success=code in SUCCESS_CODES, code=code, message=message, raw_xml=result_xml)

    return RndcResponse(success=False, code="UNKNOWN", message="Respuesta no reconocida", raw_xml=result_xml)


def extract_query_data(result_xml: str) -> dict[str, Any]:
    """Fields of root/documento (first one when several), or root/resultado, keyed upper-case."""
    try:
        root = _parse_root(result_xml)
    except ET.ParseError:
        logger.warning("query answer is not XML", extra={"raw_xml": result_xml[:200]})
        return {}
    if root is None:
        return {}
    documents = _children(root, "documento") or _children(root, "resultado")
    if not documents:
        return {}
    return {_local(field.tag).upper(): _text(field) for field in documents[0]}


class RndcClient:
    """
    Blocking client over requests; the coroutine wrappers run it in a worker thread so the
    event loop stays free while the registry answers.
    """

    def __init__(
        self,
        ws_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.ws_url = normalize_ws_url(ws_url)
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()

    def send(self, xml_request: str, ws_url: Optional[str] = None) -> RndcResponse:
        url = normalize_ws_url(ws_url) if ws_url else self.ws_url
        try:
            resp = self._post(url, build_envelope(xml_request))
        except requests.RequestException as exc:
            logger.warning("RNDC request failed", extra={"url": url, "error": str(exc)})
            return RndcResponse(success=False, code="ERROR", message=f"Error de conexión: {exc}")

        if not resp.ok:
            logger.warning("RNDC answered with HTTP error", extra={"url": url, "status": resp.status_code})
            return RndcResponse(
                success=False,
                code=f"HTTP_{resp.status_code}",
                message=f"Error HTTP {resp.status_code}: {resp.reason}",
                raw_xml=resp.text,
            )

        try:
            result_xml = extract_result(resp.text)
        except ET.ParseError:
            return RndcResponse(
                success=False, code="PARSE_ERROR", message="Error al parsear respuesta SOAP", raw_xml=resp.text
            )

        response = interpret_result(result_xml)
        if not response.raw_xml:
            response.raw_xml = resp.text
        logger.info("RNDC answered", extra={"code": response.code, "success": response.success})
        return response

    def query(self, xml_request: str, ws_url: Optional[str] = None) -> QueryResult:
        response = self.send(xml_request, ws_url)
        if not response.success:
            return QueryResult(success=False, message=response.message, raw_xml=response.raw_xml)
        return QueryResult(success=True, data=extract_query_data(response.raw_xml), raw_xml=response.raw_xml)

    def ping(self, url: Optional[str] = None, timeout: float = 10.0) -> dict[str, Any]:
        target = url or PING_URL
        start = time.perf_counter()
        try:
            resp = self.session.get(target, timeout=timeout)
        except requests.Timeout:
            return {"status": "timeout", "latency": _elapsed_ms(start), "status_code": 0}
        except requests.RequestException:
            return {"status": "offline", "latency": _elapsed_ms(start), "status_code": 0}
        online = resp.ok or resp.status_code == 405
        return {
            "status": "online" if online else "offline",
            "latency": _elapsed_ms(start),
            "status_code": resp.status_code,
        }

    async def asend(self, xml_request: str, ws_url: Optional[str] = None) -> RndcResponse:
        return await asyncio.to_thread(self.send, xml_request, ws_url)

    async def aquery(self, xml_request: str, ws_url: Optional[str] = None) -> QueryResult:
        return await asyncio.to_thread(self.query, xml_request, ws_url)

    def _post(self, url: str, envelope: str) -> requests.Response:
        headers = {"Content-Type": "text/xml; charset=utf-8", "SOAPAction": SOAP_ACTION}
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                resp = self.session.post(url, data=envelope.encode("utf-8"), headers=headers, timeout=self.timeout)
            except requests.ConnectionError as exc:
                last_error = exc
                if attempt < self.max_retries - 1:
                    time.sleep(self.backoff_seconds * (2**attempt))
                    continue
                break
            if resp.status_code in RETRYABLE_STATUS and attempt < self.max_retries - 1:
                time.sleep(self.backoff_seconds * (2**attempt))
                continue
            return resp
        raise last_error or requests.ConnectionError(f"RNDC unreachable at {url}")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
