#!/usr/bin/env python3
"""
Clinical Decision-Support API
Provides REST endpoints for dose, safety, interaction and protocol advisories
"""

from flask import Blueprint, current_app, request, jsonify
from typing import Any, Dict
import json
import logging

from pydantic import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException

from decision_support.errors import DecisionSupportError, ErrorCode, ErrorLogger, ValidationError
from decision_support.schema import Medication, Patient, PatientContext
from services.clinical_engine import ClinicalDecisionEngine, create_clinical_engine

logger = logging.getLogger(__name__)
error_logger = ErrorLogger('clinical_api')

# Create Blueprint
clinical_api = Blueprint('clinical_api', __name__, url_prefix='/api/clinical')

def get_engine() -> ClinicalDecisionEngine:
    """Engine attached to the app, created from CLINICAL_RULES_DIR on first use"""
    engine = current_app.config.get('CLINICAL_ENGINE')
    if engine is None:
        engine = create_clinical_engine(current_app.config.get('CLINICAL_RULES_DIR'))
        current_app.config['CLINICAL_ENGINE'] = engine
    return engine

def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        raise DecisionSupportError(
            error_code=ErrorCode.APP_INVALID_REQUEST,
            message="No JSON object provided"
        )
    return data

def _require(data: Dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise DecisionSupportError(
            error_code=ErrorCode.APP_MISSING_PARAMETER,
            message=f"{key} is required",
            details={"parameter": key}
        )
    return value

def _medication_from(data: Dict[str, Any]) -> Medication:
    """Medication record inline, or a name looked up in the loaded formulary"""
    value = _require(data, 'medication')
    if isinstance(value, str):
        medication = get_engine().find_medication(value)
        if medication is None:
            raise DecisionSupportError(
                error_code=ErrorCode.APP_INVALID_REQUEST,
                message=f"Medication {value} not found in formulary",
                details={"medication": value}
            )
        return medication
    return Medication.model_validate(value)

@clinical_api.route('/dose', methods=['POST'])
def calculate_dose():
    """
    Calculate the recommended dose for a medication/patient pair

    Request JSON:
    {
        "medication": "Amoxicillin" | {...medication record...},
        "patient": {"date_of_birth": "2018-04-02", "weight": 20, "allergies": []},
        "indication": "Otitis media"
    }
    """
    data = _json_body()
    medication = _medication_from(data)
    patient = Patient.model_validate(_require(data, 'patient'))

    result = get_engine().calculate_dose(medication, patient, indication=data.get('indication'))
    return jsonify(result.to_dict())

@clinical_api.route('/safety', methods=['POST'])
def drug_safety():
    """
    Safety profile of a medication for a patient

    Request JSON:
    {
        "medication": "Amoxicillin" | {...medication record...},
        "patient": {"date_of_birth": "1950-01-01", "allergies": ["Penicillin"]}
    }
    """
    data = _json_body()
    medication = _medication_from(data)
    patient = Patient.model_validate(_require(data, 'patient'))

    return jsonify(get_engine().get_drug_safety_info(medication, patient).to_dict())

@clinical_api.route('/interactions', methods=['POST'])
def check_interactions():
    """
    Pairwise interaction check

    Request JSON:
    {"medications": ["Warfarin", "Aspirin", "Lisinopril"]}
    """
    data = _json_body()
    names = _require(data, 'medications')
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise DecisionSupportError(
            error_code=ErrorCode.APP_INVALID_REQUEST,
            message="medications must be a list of names"
        )

    report = get_engine().check_interactions_by_name(names)
    response = report.to_dict()
    response['totalInteractions'] = report.total
    return jsonify(response)

@clinical_api.route('/protocol-recommendation', methods=['POST'])
def protocol_recommendation():
    """
    Match a condition to a treatment protocol and screen its medications

    Request JSON:
    {
        "query": "asthma",
        "patient_context": {"is_pregnant": false, "allergies": [], "current_medications": []}
    }
    """
    data = _json_body()
    query = _require(data, 'query')
    patient_context = PatientContext.model_validate(data.get('patient_context') or {})

    return jsonify(get_engine().get_protocol_recommendation(str(query), patient_context))

@clinical_api.route('/protocols', methods=['GET'])
def list_protocols():
    """Protocols matching ?q=, or the whole library when q is absent"""
    engine = get_engine()
    query = request.args.get('q', '').strip()
    protocols = engine.search_protocols(query) if query else list(engine.protocols)

    return jsonify({
        'protocols': [
            {
                'id': p.id,
                'name': p.name,
                'category': p.category,
                'icdCodes': list(p.icd_codes),
                'severity': p.severity.value
            }
            for p in protocols
        ],
        'total': len(protocols)
    })

# Error handlers
@clinical_api.errorhandler(ValidationError)
def handle_validation_error(error):
    error_logger.log_error(error, logging.WARNING)
    return jsonify(error.to_dict()), 422

@clinical_api.errorhandler(DecisionSupportError)
def handle_decision_support_error(error):
    error_logger.log_error(error, logging.WARNING)
    return jsonify(error.to_dict()), 400

@clinical_api.errorhandler(SchemaValidationError)
def handle_schema_error(error):
    wrapped = DecisionSupportError(
        error_code=ErrorCode.APP_INVALID_REQUEST,
        message="Request payload failed validation",
        details={"errors": json.loads(error.json(include_url=False))},
        original_exception=error
    )
    error_logger.log_error(wrapped, logging.WARNING)
    return jsonify(wrapped.to_dict()), 400

@clinical_api.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    wrapped = DecisionSupportError(
        error_code=ErrorCode.APP_INTERNAL_ERROR,
        message="Internal server error",
        original_exception=error
    )
    logger.error(f"Unhandled error in clinical API [{wrapped.trace_id}]: {error}", exc_info=error)
    return jsonify(wrapped.to_dict()), 500
