"""
SOAP Stock Update Adapter (SOA path)

Synchronous request/response notification to the central supply
platform's StockUpdate web service.

Request (SOAP 1.1 body):
    <tns:StockUpdateRequest>
      <tns:facilityId>Hospital-D</tns:facilityId>
      <tns:productCode>PHYSIO-SALINE-500ML</tns:productCode>
      <tns:currentStockUnits>10</tns:currentStockUnits>
      <tns:dailyConsumptionUnits>20</tns:dailyConsumptionUnits>
      <tns:daysOfSupply>0.5</tns:daysOfSupply>
      <tns:alertSeverity>URGENT</tns:alertSeverity>
      <tns:timestamp>2026-01-07T12:00:00+00:00</tns:timestamp>
    </tns:StockUpdateRequest>

Response:
    <tns:StockUpdateResponse>
      <tns:success>true</tns:success>
      <tns:message>...</tns:message>
      <tns:orderTriggered>true</tns:orderTriggered>
      <tns:orderId>ORD-123</tns:orderId>
    </tns:StockUpdateResponse>

A <soap:Fault> in the body is raised as TransportFault, even when the
server sends it with HTTP 500.
"""

from __future__ import annotations

import time
import xml.etree.ElementTree as ET
from typing import Any

import httpx

from core.errors import PayloadValidationError
from core.types import AlertEvent, AuditEventType, DeliveryPath, utcnow
from integrations.base import DeliveryReceipt, NotificationAdapter, register_adapter
from integrations.errors import ResponseFormatError, TransportFault

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ACTION = "StockUpdate"

REQUEST_FIELDS = (
    "facilityId",
    "productCode",
    "currentStockUnits",
    "dailyConsumptionUnits",
    "daysOfSupply",
    "alertSeverity",
    "timestamp",
)


def build_stock_update_request(
    *,
    facility_id: str,
    product_code: str,
    current_stock: Any,
    daily_consumption: Any,
    days_of_supply: float | None,
    severity: str,
) -> dict[str, Any]:
    """Validate stock figures and build the StockUpdateRequest field map."""
    if current_stock is None:
        raise PayloadValidationError("Missing required field: currentStock")
    if daily_consumption is None:
        raise PayloadValidationError("Missing required field: dailyConsumption")
    if isinstance(current_stock, bool) or not isinstance(current_stock, (int, float)) or current_stock < 0:
        raise PayloadValidationError("Invalid currentStock: must be a non-negative number")
    if isinstance(daily_consumption, bool) or not isinstance(daily_consumption, (int, float)) or daily_consumption <= 0:
        raise PayloadValidationError("Invalid dailyConsumption: must be a positive number")

    if days_of_supply is None:
        days_of_supply = current_stock / daily_consumption

    return {
        "facilityId": facility_id,
        "productCode": product_code,
        "currentStockUnits": int(current_stock),
        "dailyConsumptionUnits": daily_consumption,
        "daysOfSupply": round(float(days_of_supply), 2),
        "alertSeverity": severity,
        "timestamp": utcnow().isoformat(),
    }


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_envelope(request: dict[str, Any], namespace: str) -> bytes:
    ET.register_namespace("soapenv", SOAP_ENV_NS)
    ET.register_namespace("tns", namespace)
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    operation = ET.SubElement(body, f"{{{namespace}}}StockUpdateRequest")
    for name in REQUEST_FIELDS:
        child = ET.SubElement(operation, f"{{{namespace}}}{name}")
        child.text = _format(request[name])
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_local(parent: ET.Element, name: str) -> ET.Element | None:
    for child in parent.iter():
        if _local(child.tag) == name:
            return child
    return None


def _text(parent: ET.Element, name: str) -> str | None:
    node = _find_local(parent, name)
    if node is None:
        return None
    return (node.text or "").strip()


def _parse_bool(raw: str | None, field_name: str) -> bool:
    if raw is None:
        raise ResponseFormatError(f"Response missing required field: {field_name} (boolean)")
    lowered = raw.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ResponseFormatError(f"Response field {field_name} is not a boolean: {raw!r}")


def parse_stock_update_response(content: bytes) -> dict[str, Any]:
    """Parse a StockUpdate response envelope; raise TransportFault for a SOAP Fault."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ResponseFormatError(f"Response is not valid XML: {exc}") from exc

    body = _find_local(root, "Body")
    if body is None:
        raise ResponseFormatError("Response has no SOAP Body")

    fault = _find_local(body, "Fault")
    if fault is not None:
        code = _text(fault, "faultcode") or _text(fault, "Value") or "UNKNOWN"
        reason = _text(fault, "faultstring") or _text(fault, "Text") or "SOAP fault"
        detail_node = _find_local(fault, "detail")
        detail = ET.tostring(detail_node, encoding="unicode") if detail_node is not None else None
        raise TransportFault(code, reason, detail)

    response = _find_local(body, "StockUpdateResponse")
    if response is None:
        raise ResponseFormatError("Response missing StockUpdateResponse element")

    message = _text(response, "message")
    if message is None:
        raise ResponseFormatError("Response missing required field: message (string)")

    return {
        "success": _parse_bool(_text(response, "success"), "success"),
        "message": message,
        "order_triggered": _parse_bool(_text(response, "orderTriggered"), "orderTriggered"),
        "order_id": _text(response, "orderId") or None,
    }


@register_adapter("SOA")
class SoapStockUpdateAdapter(NotificationAdapter):
    """
    SOAP notification adapter.

    Config comes from Settings (soap_endpoint, soap_namespace,
    soap_username/password, soap_timeout_seconds). The httpx client is
    injected so its lifecycle belongs to the caller.
    """

    path = DeliveryPath.SOA
    event_type = AuditEventType.STOCK_UPDATE_SENT

    def __init__(
        self,
        facility_id: str,
        product_code: str,
        *,
        client: httpx.AsyncClient,
        endpoint: str,
        namespace: str,
        username: str = "",
        password: str = "",
        timeout_seconds: float = 30.0,
    ):
        super().__init__(facility_id, product_code)
        self.client = client
        self.endpoint = endpoint
        self.namespace = namespace
        self.auth = httpx.BasicAuth(username, password) if username else None
        self.timeout = httpx.Timeout(timeout_seconds)

    @property
    def adapter_name(self) -> str:
        return "SOA"

    def build_payload(self, alert: AlertEvent) -> dict[str, Any]:
        return build_stock_update_request(
            facility_id=alert.facility_id,
            product_code=alert.product_code,
            current_stock=alert.count_units,
            daily_consumption=alert.consumption_rate,
            days_of_supply=alert.days_of_supply,
            severity=alert.severity.value,
        )

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        """One StockUpdate call. Returns {success, order_triggered, order_id, message}."""
        missing = [name for name in REQUEST_FIELDS if name not in payload]
        if missing:
            raise PayloadValidationError(f"Missing required field(s): {', '.join(missing)}")

        response = await self.client.post(
            self.endpoint,
            content=render_envelope(payload, self.namespace),
            headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": SOAP_ACTION},
            auth=self.auth if self.auth is not None else httpx.USE_CLIENT_DEFAULT,
            timeout=self.timeout,
        )

        # SOAP 1.1 servers report faults with HTTP 500 and a Fault body.
        if response.status_code >= 400 and b"Fault" not in response.content:
            response.raise_for_status()
        return parse_stock_update_response(response.content)

    async def deliver(self, payload: dict[str, Any]) -> DeliveryReceipt:
        started = time.perf_counter()
        result = await self.send(payload)
        latency_ms = int((time.perf_counter() - started) * 1000)

        if result["order_triggered"] and not result["order_id"]:
            self.logger.warning("soap.order_triggered_without_id")

        self.logger.info(
            "soap.stock_update_sent",
            latency_ms=latency_ms,
            success=result["success"],
            order_triggered=result["order_triggered"],
        )
        return DeliveryReceipt(
            success=result["success"],
            message=result["message"],
            order_triggered=result["order_triggered"],
            order_id=result["order_id"],
            transport_latency_ms=latency_ms,
        )
