"""
Clinical Decision Support
Rule-based dose, allergy, interaction and protocol advisories over supplied records
"""

from .errors import DecisionSupportError, ValidationError, ErrorCode
from .schema import (Medication, Patient, PatientContext, TreatmentProtocol,
                     ProtocolTemplate, EngineSettings)
from .demographics import calculate_age, resolve_demographics
from .dosing import DoseResult, calculate_dose
from .screening import SafetyInfo, get_drug_safety_info
from .interactions import InteractionReport, check_interactions_by_name
from .protocols import (get_protocol_recommendation, generate_protocols_from_template,
                        load_protocol_library)

__all__ = [
    'DecisionSupportError', 'ValidationError', 'ErrorCode',
    'Medication', 'Patient', 'PatientContext', 'TreatmentProtocol', 'ProtocolTemplate',
    'EngineSettings', 'calculate_age', 'resolve_demographics', 'DoseResult', 'calculate_dose',
    'SafetyInfo', 'get_drug_safety_info', 'InteractionReport', 'check_interactions_by_name',
    'get_protocol_recommendation', 'generate_protocols_from_template', 'load_protocol_library'
]
