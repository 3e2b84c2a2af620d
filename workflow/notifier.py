"""
Supplier notification sent when a Purchase Order leaves draft.

The controller only depends on the SupplierNotifier protocol. The webhook
implementation renders a Jinja2 template into a JSON payload and sends it to
the configured URL; the transport (email relay, chat webhook, supplier API)
is opaque to the workflow.

Failures raise SendError and are never retried here: the caller decides
whether and when to try again. The request timeout belongs to this
transport layer, not to the controller.
"""
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Protocol

from jinja2 import ChoiceLoader, FileSystemLoader, TemplateNotFound, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from config import DEFAULT_TEMPLATES_DIR, Config
from models.purchase_order import PurchaseOrder
from .errors import SendError

logger = logging.getLogger(__name__)


class SupplierNotifier(Protocol):
    def notify(self, order: PurchaseOrder) -> None:
        """Tell the supplier about the order. Raise SendError on failure."""


class WebhookSupplierNotifier:
    """
    Sends a templated JSON payload to a configured URL for each PO sent to a
    supplier. Templates are looked up in CONFIG_DIR first, then in the
    packaged defaults/ folder.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.jinja_env = SandboxedEnvironment(
            loader=ChoiceLoader([
                FileSystemLoader(str(config.config_dir)),
                FileSystemLoader(str(DEFAULT_TEMPLATES_DIR)),
            ]),
            autoescape=select_autoescape(["json", "xml"]),
            keep_trailing_newline=True,
        )

    def build_context(self, order: PurchaseOrder) -> Dict[str, Any]:
        data = order.model_dump(mode="json")
        data["line_item_count"] = len(order.line_items)
        return data

    def render_payload(self, order: PurchaseOrder) -> str:
        template_name = self.config.supplier_notify_template
        try:
            template = self.jinja_env.get_template(template_name)
        except TemplateNotFound as exc:
            raise SendError(f"Supplier notification template '{template_name}' not found") from exc
        return template.render(**self.build_context(order))

    def notify(self, order: PurchaseOrder) -> None:
        url = self.config.supplier_notify_url
        if not url:
            raise SendError("SUPPLIER_NOTIFY_URL is not configured")

        payload = self.render_payload(order).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=payload,
            method=self.config.supplier_notify_method.upper(),
        )
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("User-Agent", "Supplyline-Supplier-Notify/1.0")

        if self.config.supplier_notify_headers_json:
            try:
                for key, value in json.loads(self.config.supplier_notify_headers_json).items():
                    req.add_header(key, str(value))
            except (ValueError, AttributeError) as exc:
                logger.warning("Failed to parse SUPPLIER_NOTIFY_HEADERS: %s", exc)

        try:
            with urllib.request.urlopen(req, timeout=self.config.supplier_notify_timeout_seconds) as response:
                status_code = response.getcode()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace") if exc.fp else str(exc)
            logger.error("Supplier notification failed for %s: HTTP %d - %s",
                         order.po_number, exc.code, body[:300])
            raise SendError(f"Supplier notification failed: HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            logger.error("Supplier notification error for %s: %s", order.po_number, exc)
            raise SendError(f"Supplier notification failed: {exc}") from exc

        logger.info("Supplier notified for %s: HTTP %d", order.po_number, status_code)


def build_notifier(config: Config) -> SupplierNotifier:
    if not config.supplier_notify_url:
        logger.warning("SUPPLIER_NOTIFY_URL is not set; sending to suppliers will fail")
    return WebhookSupplierNotifier(config)
