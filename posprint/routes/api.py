"""REST API endpoints for programmatic access."""
import logging

from flask import Blueprint, current_app, request, jsonify
from posprint import db
from posprint.models import Template, PrintHistory
from posprint.printer import (
    AutoConfigurator,
    PrinterError,
    PrinterPort,
    ReceiptTemplate,
    TemplateRenderer,
    discover_printers,
    find_known_devices,
    identify_device,
    query_status,
)
from posprint.printer.escpos import CommandEncoder

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _controller():
    return current_app.extensions["printer_controller"]


def _port_from(data):
    """Parse the "port" object of a request body; raises PrinterError."""
    port = (data or {}).get("port")
    if not isinstance(port, dict):
        raise PrinterError("port is required")
    try:
        return PrinterPort.from_dict(port)
    except ValueError as e:
        raise PrinterError(f"Invalid port: {e}") from e


def _preview_renderer():
    return TemplateRenderer(CommandEncoder(width=_controller().settings.width))


@api_bp.errorhandler(PrinterError)
def handle_printer_error(e):
    return jsonify({"error": str(e)}), 400


# Drivers API

@api_bp.route("/drivers", methods=["GET"])
def list_drivers():
    """List registered printer drivers in matching order."""
    return jsonify({"drivers": _controller().registry.to_list()})


# Printers API

@api_bp.route("/printers/discover", methods=["POST"])
def discover():
    """Scan the local networks, or a given range, for the raw printing port.

    Request body (optional):
    {
        "network_range": "192.168.1.0/24"
    }
    """
    data = request.get_json(silent=True) or {}
    settings = _controller().settings
    printers = discover_printers(
        data.get("network_range"),
        port=settings.tcp_port,
        timeout_ms=settings.discovery_timeout_ms,
        scan_window_prefix=settings.scan_window_prefix,
    )
    return jsonify({"printers": printers})


@api_bp.route("/printers/identify", methods=["POST"])
def identify():
    """Run the identification handshake against a port.

    Request body:
    {
        "port": {"kind": "LAN", "address": "192.168.1.50"}
    }
    """
    port = _port_from(request.get_json(silent=True))
    controller = _controller()
    result = identify_device(port, controller.settings.identify_timeout_ms, controller.transport_factory)
    driver = controller.registry.match(result)

    response = result.to_dict()
    response["port"] = port.to_dict()
    response["model"] = driver.model_name if driver else None
    return jsonify(response)


@api_bp.route("/printers/status", methods=["POST"])
def status():
    """Query the real-time status byte of a printer."""
    port = _port_from(request.get_json(silent=True))
    controller = _controller()
    printer_status = query_status(port, controller.settings.identify_timeout_ms, controller.transport_factory)
    return jsonify({
        "port": port.to_dict(),
        "status": printer_status.to_dict() if printer_status else None,
    })


@api_bp.route("/printers/usb", methods=["GET"])
def list_usb_printers():
    """List connected USB devices matching the known printer table."""
    return jsonify({"printers": [d.to_dict() for d in find_known_devices()]})


@api_bp.route("/printers/autoconfigure", methods=["POST"])
def autoconfigure():
    """Find a supported printer and bring it onto the network."""
    data = request.get_json(silent=True) or {}
    configurator = AutoConfigurator(_controller(), network_range=data.get("network_range"))
    printer = configurator.run()
    if printer is None:
        return jsonify({"success": False, "error": "No supported printer found"}), 404
    return jsonify({"success": True, "printer": printer.to_dict()})


# Templates API

def _validated_content(content):
    """Return template content as a dict, or raise PrinterError."""
    return ReceiptTemplate.from_dict(content).to_dict()


@api_bp.route("/templates", methods=["GET"])
def list_templates():
    """List all templates."""
    templates = Template.query.order_by(Template.name).all()
    return jsonify({
        "templates": [t.to_dict() for t in templates]
    })


@api_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    """Get a specific template."""
    template = db.get_or_404(Template, template_id)
    result = template.to_dict()
    result["variables"] = _preview_renderer().extract_variables(template.content)
    return jsonify(result)


@api_bp.route("/templates", methods=["POST"])
def create_template():
    """Create a new template."""
    data = request.get_json(silent=True) or {}

    if not data.get("name"):
        return jsonify({"error": "Name is required"}), 400
    if not data.get("content"):
        return jsonify({"error": "Content is required"}), 400

    template = Template(
        name=data["name"],
        description=data.get("description", ""),
    )
    template.content = _validated_content(data["content"])
    db.session.add(template)
    db.session.commit()

    return jsonify(template.to_dict()), 201


@api_bp.route("/templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    """Update a template."""
    template = db.get_or_404(Template, template_id)
    data = request.get_json(silent=True) or {}

    if "name" in data:
        template.name = data["name"]
    if "description" in data:
        template.description = data["description"]
    if "content" in data:
        template.content = _validated_content(data["content"])

    db.session.commit()
    return jsonify(template.to_dict())


@api_bp.route("/templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    """Delete a template."""
    template = db.get_or_404(Template, template_id)
    db.session.delete(template)
    db.session.commit()
    return jsonify({"success": True})


def _resolve_template(data):
    """Return (Template or None, template content) for a print or preview request."""
    template_id = data.get("template_id")
    if template_id:
        template = db.session.get(Template, template_id)
        if not template:
            return None, None
        return template, template.content
    if data.get("template"):
        return None, _validated_content(data["template"])
    raise PrinterError("template_id or template is required")


# Print API

@api_bp.route("/print", methods=["POST"])
def print_receipt():
    """Print a receipt.

    Request body:
    {
        "template_id": 1,              // or "template": {"header": [...], ...}
        "receipt_data": {"items": [...], ...},
        "port": {"kind": "LAN", "address": "192.168.1.50"},
        "model": "HPRT TP80K"          // optional, identified if not provided
    }
    """
    data = request.get_json(silent=True) or {}
    port = _port_from(data)
    template, content = _resolve_template(data)
    if content is None:
        return jsonify({"error": "Template not found"}), 404

    receipt_data = data.get("receipt_data", {})
    preview = _preview_renderer().render_preview(content, receipt_data)
    result = _controller().print_receipt(port, content, receipt_data, model=data.get("model"))

    history = PrintHistory(
        template_id=template.id if template else None,
        rendered_preview=preview,
        model=result.model,
        bytes_sent=result.bytes_sent,
        status="success" if result.success else "failed",
        error_message=None if result.success else result.message,
    )
    history.receipt_data = receipt_data
    history.port = port.to_dict()
    db.session.add(history)
    db.session.commit()

    if not result.success:
        logger.warning("Print job %d failed: %s", history.id, result.message)
        return jsonify({
            "success": False,
            "history_id": history.id,
            "error": result.message
        }), 500

    return jsonify({
        "success": True,
        "history_id": history.id,
        "message": "Receipt printed successfully",
        "result": result.to_dict()
    })


@api_bp.route("/preview", methods=["POST"])
def preview_receipt():
    """Preview a receipt without printing.

    Request body:
    {
        "template_id": 1,              // or "template": {"header": [...], ...}
        "receipt_data": {...}
    }
    """
    data = request.get_json(silent=True) or {}
    _, content = _resolve_template(data)
    if content is None:
        return jsonify({"error": "Template not found"}), 404

    renderer = _preview_renderer()
    return jsonify({
        "preview": renderer.render_preview(content, data.get("receipt_data", {})),
        "variables": renderer.extract_variables(content)
    })


# History API

@api_bp.route("/history", methods=["GET"])
def list_history():
    """List print history.

    Query params:
    - page: Page number (default: 1)
    - per_page: Items per page (default: 20, max: 100)
    - status: Filter by status (success/failed)
    - template_id: Filter by template
    """
    page = request.args.get("page", 1, type=int)
    per_page = min(request.args.get("per_page", 20, type=int), 100)

    query = PrintHistory.query.order_by(PrintHistory.printed_at.desc(), PrintHistory.id.desc())

    status_filter = request.args.get("status")
    if status_filter:
        query = query.filter_by(status=status_filter)

    template_id = request.args.get("template_id", type=int)
    if template_id:
        query = query.filter_by(template_id=template_id)

    pagination = query.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        "history": [h.to_dict() for h in pagination.items],
        "page": pagination.page,
        "pages": pagination.pages,
        "total": pagination.total,
        "has_next": pagination.has_next,
        "has_prev": pagination.has_prev
    })


@api_bp.route("/history/<int:history_id>", methods=["GET"])
def get_history(history_id):
    """Get a specific history record."""
    record = db.get_or_404(PrintHistory, history_id)
    return jsonify(record.to_dict())
