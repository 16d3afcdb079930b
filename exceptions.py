"""
Error types raised by the attribution engine, repository and service.

Everything derives from AttributionError so the UI can catch one type and
show `message`; `details` carries the structured context for logs.
"""


def _details(**fields) -> dict:
    return {key: value for key, value in fields.items() if value is not None}


class AttributionError(Exception):
    """Base exception for attribution-related errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AttributionError):
    """Bad input at a boundary: amounts, timestamps, touchpoint types, emails."""

    def __init__(self, message: str, field: str = None, value=None):
        super().__init__(message, _details(field=field, value=value))
        self.field = field
        self.value = value


class DatabaseError(AttributionError):
    """A storage operation failed. The driver error is chained as __cause__."""

    def __init__(self, message: str, operation: str = None, query: str = None):
        super().__init__(message, _details(operation=operation, query=query[:200] if query else None))
        self.operation = operation
        self.query = query


class ConfigurationError(AttributionError):
    """Invalid engine configuration (weights, half-life, model)."""

    def __init__(self, message: str, setting_key: str = None):
        super().__init__(message, _details(setting_key=setting_key))
        self.setting_key = setting_key


class UnknownModelError(ConfigurationError):
    """The attribution model is not one of the five supported values. Never retried."""

    def __init__(self, model):
        super().__init__(f"Unknown attribution model: {model}", setting_key="attribution_model")
        self.details["model"] = str(model)
        self.model = model


class PartnerNotFoundError(AttributionError):

    def __init__(self, partner_id: str):
        super().__init__(f"Partner not found: {partner_id}", {"partner_id": partner_id})
        self.partner_id = partner_id


class DealNotFoundError(AttributionError):

    def __init__(self, deal_id: str):
        super().__init__(f"Deal not found: {deal_id}", {"deal_id": deal_id})
        self.deal_id = deal_id
