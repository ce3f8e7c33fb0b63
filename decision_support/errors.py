#!/usr/bin/env python3
"""
Decision Support Error Codes
Auditable error codes for rule loading, record validation and the HTTP layer.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

class ErrorCode(Enum):
    """Error codes grouped by the layer that raises them"""

    # Record validation (VAL_xxx)
    VAL_INVALID_BIRTH_DATE = "VAL_001"
    VAL_MALFORMED_WEIGHT_FORMULA = "VAL_002"

    # Rule and protocol configuration (CFG_xxx)
    CFG_FILE_NOT_FOUND = "CFG_001"
    CFG_INVALID_CONFIG = "CFG_002"
    CFG_INVALID_PROTOCOL = "CFG_003"

    # Request handling (APP_xxx)
    APP_INVALID_REQUEST = "APP_001"
    APP_MISSING_PARAMETER = "APP_002"
    APP_INTERNAL_ERROR = "APP_003"

ERROR_CODE_DESCRIPTIONS = {
    ErrorCode.VAL_INVALID_BIRTH_DATE: "Patient date of birth is not a valid past date",
    ErrorCode.VAL_MALFORMED_WEIGHT_FORMULA: "Weight-based dosing formula cannot be parsed",
    ErrorCode.CFG_FILE_NOT_FOUND: "Rule configuration file missing",
    ErrorCode.CFG_INVALID_CONFIG: "Rule configuration file malformed",
    ErrorCode.CFG_INVALID_PROTOCOL: "Protocol library entry failed validation",
    ErrorCode.APP_INVALID_REQUEST: "Request payload failed validation",
    ErrorCode.APP_MISSING_PARAMETER: "Required request parameter missing"
}

def get_error_description(error_code: ErrorCode) -> str:
    return ERROR_CODE_DESCRIPTIONS.get(error_code, "Unknown error")

class DecisionSupportError(Exception):
    """Engine error carrying a code, structured details and a short trace id"""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(f"[{error_code.value}] {message}")
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception
        self.trace_id = uuid.uuid4().hex[:8]
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def description(self) -> str:
        return get_error_description(self.error_code)

    def to_dict(self) -> Dict[str, Any]:
        """Payload for API responses and structured log records"""
        original = self.original_exception
        return {
            "error_code": self.error_code.value,
            "description": self.description,
            "message": self.message,
            "details": self.details,
            "trace_id": self.trace_id,
            "timestamp": self.timestamp,
            "original_error": None if original is None else str(original)
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

class ValidationError(DecisionSupportError):
    """Corrupt patient or reference data that must not silently produce a wrong dose"""

class ErrorLogger:
    """Writes DecisionSupportErrors to a named logger with their payload attached"""

    def __init__(self, logger_name: str = "decision_support"):
        self.logger = logging.getLogger(logger_name)

    def log_error(self, error: DecisionSupportError, level: int = logging.ERROR):
        self.logger.log(
            level,
            f"{error.error_code.value} [{error.trace_id}] {error.message}",
            extra={"decision_support_error": error.to_dict()}
        )
        if error.original_exception is not None:
            self.logger.debug(f"Cause of {error.trace_id}", exc_info=error.original_exception)

def invalid_birth_date_error(value: Any, original_error: Optional[Exception] = None) -> ValidationError:
    """Unparseable or future date of birth"""
    return ValidationError(
        error_code=ErrorCode.VAL_INVALID_BIRTH_DATE,
        message=f"Invalid date of birth: {value!r}",
        details={
            "value": str(value),
            "suggested_action": "Correct the patient's date of birth in the source record"
        },
        original_exception=original_error
    )

def malformed_formula_error(medication_name: str, formula: str) -> ValidationError:
    """Weight-based formula without a '<number> mg/kg' rate"""
    return ValidationError(
        error_code=ErrorCode.VAL_MALFORMED_WEIGHT_FORMULA,
        message=f"Weight-based formula for {medication_name} is not of the form '<number> mg/kg': {formula!r}",
        details={
            "medication": medication_name,
            "formula": formula,
            "suggested_action": "Fix the medication reference record"
        }
    )
