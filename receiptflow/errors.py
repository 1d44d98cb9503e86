"""Error taxonomy shared by the store, OCR engine and HTTP layer"""


class ReceiptFlowError(Exception):
    """Base class for all domain errors"""


class ValidationError(ReceiptFlowError):
    """Missing required field or invalid value, rejected before the store"""


class NotFound(ReceiptFlowError):
    """Unknown document id or image reference"""


class Forbidden(ReceiptFlowError):
    """Role or ownership check failed"""


class InvalidTransition(ReceiptFlowError):
    """Status is already terminal"""


class OcrUnavailable(ReceiptFlowError):
    """Recognition backend could not process the image"""


class StorageError(ReceiptFlowError):
    """Image storage failed to persist or read an asset"""
