"""Database models."""
import json
from datetime import datetime
from posprint import db


class Template(db.Model):
    """Receipt template model."""
    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    content_json = db.Column(db.Text, nullable=False)  # JSON: {header: [...], body: [...], footer: [...]}
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationship to print history
    prints = db.relationship("PrintHistory", backref="template", lazy="dynamic")

    @property
    def content(self):
        """Parse template JSON."""
        return json.loads(self.content_json) if self.content_json else {}

    @content.setter
    def content(self, value):
        """Set template as JSON."""
        self.content_json = json.dumps(value)

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Template {self.name}>"


class PrintHistory(db.Model):
    """Print history model."""
    __tablename__ = "print_history"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id"), nullable=True)
    receipt_data_json = db.Column(db.Text, nullable=True)  # JSON of receipt data used
    rendered_preview = db.Column(db.Text, nullable=True)  # Text preview of what was printed
    port_json = db.Column(db.Text, nullable=True)  # Snapshot of the target port
    model = db.Column(db.String(100), nullable=True)  # Driver used
    bytes_sent = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), nullable=False)  # success, failed
    error_message = db.Column(db.Text, nullable=True)
    printed_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def receipt_data(self):
        """Parse receipt data JSON."""
        return json.loads(self.receipt_data_json) if self.receipt_data_json else {}

    @receipt_data.setter
    def receipt_data(self, value):
        """Set receipt data as JSON."""
        self.receipt_data_json = json.dumps(value, default=str)

    @property
    def port(self):
        """Parse port JSON."""
        return json.loads(self.port_json) if self.port_json else {}

    @port.setter
    def port(self, value):
        """Set port as JSON."""
        self.port_json = json.dumps(value)

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
            "receipt_data": self.receipt_data,
            "rendered_preview": self.rendered_preview,
            "port": self.port,
            "model": self.model,
            "bytes_sent": self.bytes_sent,
            "status": self.status,
            "error_message": self.error_message,
            "printed_at": self.printed_at.isoformat() if self.printed_at else None,
        }

    def __repr__(self):
        return f"<PrintHistory {self.id} ({self.status})>"
