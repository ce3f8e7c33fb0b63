#!/usr/bin/env python3
"""
Clinical Decision-Support Engine
Holds the loaded rule tables, formulary and protocol library, and exposes the
dose, safety, interaction and protocol-advisory operations to the HTTP layer.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError as SchemaValidationError

from decision_support.dosing import DoseResult, calculate_dose
from decision_support.errors import DecisionSupportError, ErrorCode
from decision_support.interactions import InteractionReport, check_interactions_by_name
from decision_support.protocols import (get_protocol_by_id, get_protocol_recommendation,
                                        get_protocols_by_category, get_protocols_by_icd,
                                        load_protocol_library, search_protocols)
from decision_support.rules import (DEFAULT_CONFIG_DIR, load_engine_settings,
                                    load_rule_tables, read_yaml)
from decision_support.schema import Medication, Patient, PatientContext, TreatmentProtocol
from decision_support.screening import SafetyInfo, get_drug_safety_info

logger = logging.getLogger(__name__)

FORMULARY_FILE = "formulary.yaml"

class ClinicalDecisionEngine:
    """Rule-based decision support over supplied medication and patient records"""

    def __init__(
        self,
        config_dir: Path = None,
        medications: Optional[Iterable[Medication]] = None,
        protocols: Optional[Iterable[TreatmentProtocol]] = None
    ):
        if config_dir is None:
            config_dir = DEFAULT_CONFIG_DIR

        self.config_dir = Path(config_dir)
        self._load_configurations(medications, protocols)

    def _load_configurations(self, medications, protocols):
        """Load all configuration files"""
        try:
            self.settings = load_engine_settings(self.config_dir)
            self.rules = load_rule_tables(self.config_dir)

            if protocols is None:
                self.protocols = load_protocol_library(self.config_dir)
            else:
                self.protocols = tuple(protocols)

            if medications is None:
                medications = self._load_formulary()
            self.formulary = tuple(medications)
            self._formulary_index = self._index_formulary(self.formulary)

            logger.info(
                f"Clinical engine ready: {len(self.formulary)} medications, "
                f"{len(self.protocols)} protocols"
            )

        except DecisionSupportError as e:
            logger.error(f"Failed to load clinical engine configuration: {e}")
            raise

    def _load_formulary(self) -> List[Medication]:
        """Optional formulary.yaml; the data layer normally supplies medications"""
        formulary_file = self.config_dir / FORMULARY_FILE
        if not formulary_file.exists():
            logger.info(f"No formulary file at {formulary_file}; medication lookups will be unresolved")
            return []

        data = read_yaml(formulary_file)
        try:
            return [Medication.model_validate(raw) for raw in data.get('medications', [])]
        except SchemaValidationError as e:
            raise DecisionSupportError(
                error_code=ErrorCode.CFG_INVALID_CONFIG,
                message=f"Formulary file contains an invalid medication: {formulary_file}",
                details={"path": str(formulary_file)},
                original_exception=e
            )

    @staticmethod
    def _index_formulary(medications: Sequence[Medication]) -> Dict[str, Medication]:
        """Lower-cased name and generic name -> medication; first entry wins"""
        index = {}
        for medication in medications:
            for key in (medication.name, medication.generic_name):
                if key and key.lower() not in index:
                    index[key.lower()] = medication
        return index

    def find_medication(self, name: str) -> Optional[Medication]:
        """Case-insensitive lookup by name or generic name"""
        if not name:
            return None
        return self._formulary_index.get(name.strip().lower())

    def calculate_dose(
        self,
        medication: Medication,
        patient: Patient,
        indication: Optional[str] = None,
        now: Optional[Union[date, datetime]] = None
    ) -> DoseResult:
        return calculate_dose(
            medication, patient, indication=indication, now=now,
            rules=self.rules, settings=self.settings
        )

    def get_drug_safety_info(self, medication: Medication, patient: Patient) -> SafetyInfo:
        return get_drug_safety_info(medication, patient, rules=self.rules)

    def check_interactions_by_name(self, medication_names: Sequence[str]) -> InteractionReport:
        return check_interactions_by_name(medication_names, rules=self.rules)

    def check_new_prescription(self, current_medications: Sequence[str], new_medication: str) -> InteractionReport:
        """Interaction check for a candidate prescription against an active list"""
        return check_interactions_by_name([*current_medications, new_medication], rules=self.rules)

    def get_protocol_recommendation(self, query: str, patient_context: PatientContext) -> Dict[str, Any]:
        return get_protocol_recommendation(
            query,
            patient_context,
            self.protocols,
            medication_lookup=self.find_medication,
            rules=self.rules,
            settings=self.settings
        )

    def search_protocols(self, query: str) -> List[TreatmentProtocol]:
        return search_protocols(query, self.protocols)

    def get_protocol(self, protocol_id: str) -> Optional[TreatmentProtocol]:
        return get_protocol_by_id(protocol_id, self.protocols)

    def get_protocols_by_category(self, category: str) -> List[TreatmentProtocol]:
        return get_protocols_by_category(category, self.protocols)

    def get_protocols_by_icd(self, icd_code: str) -> List[TreatmentProtocol]:
        return get_protocols_by_icd(icd_code, self.protocols)


def create_clinical_engine(config_dir: Path = None, **kwargs) -> ClinicalDecisionEngine:
    """Factory function to create the clinical decision-support engine"""
    return ClinicalDecisionEngine(config_dir=config_dir, **kwargs)
