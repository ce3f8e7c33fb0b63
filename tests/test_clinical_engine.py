#!/usr/bin/env python3
"""
Unit tests for the clinical decision-support engine facade
"""

import pytest
import yaml
import tempfile
import shutil
from datetime import date
from pathlib import Path
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from decision_support.errors import DecisionSupportError, ErrorCode
from decision_support.rules import DEFAULT_CONFIG_DIR
from decision_support.schema import Medication, Patient, PatientContext
from services.clinical_engine import ClinicalDecisionEngine, create_clinical_engine

FORMULARY = {
    'medications': [
        {
            'name': 'Prednisone',
            'generic_name': 'prednisone',
            'category': 'Corticosteroid',
            'strength': '20mg',
            'route': 'Oral',
            'standard_dose_adult': '40 mg',
            'pregnancy_category': 'D',
            'drug_interactions': ['Warfarin - may alter INR']
        },
        {
            'name': 'Ventolin',
            'generic_name': 'Albuterol nebulizer',
            'category': 'Bronchodilator',
            'strength': '2.5mg/3ml',
            'route': 'Nebulizer',
            'standard_dose_adult': '2.5 mg',
            'standard_dose_pediatric': '1.25 mg',
            'pregnancy_category': 'C'
        }
    ]
}

class TestClinicalDecisionEngine:
    """Engine loaded from a temporary config directory"""

    def setup_method(self):
        """Copy the bundled rules and add a formulary"""
        self.temp_dir = Path(tempfile.mkdtemp())
        for name in ("rules.yaml", "engine.yaml", "protocols.yaml"):
            shutil.copy(DEFAULT_CONFIG_DIR / name, self.temp_dir / name)

        with open(self.temp_dir / "formulary.yaml", 'w') as f:
            yaml.dump(FORMULARY, f)

        self.engine = create_clinical_engine(self.temp_dir)

    def teardown_method(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir)

    def test_configuration_loading(self):
        assert len(self.engine.rules.interaction_rules) == 10
        assert len(self.engine.formulary) == 2
        assert self.engine.get_protocol("asthma-exacerbation") is not None
        assert self.engine.settings.geriatric_age_threshold == 65

    def test_find_medication_case_insensitive(self):
        assert self.engine.find_medication("PREDNISONE").name == "Prednisone"
        assert self.engine.find_medication("  ventolin ").name == "Ventolin"

    def test_find_medication_by_generic_name(self):
        assert self.engine.find_medication("albuterol nebulizer").name == "Ventolin"

    def test_find_medication_unknown(self):
        assert self.engine.find_medication("Unobtainium") is None
        assert self.engine.find_medication("") is None

    def test_calculate_dose(self):
        medication = self.engine.find_medication("Ventolin")
        patient = Patient(date_of_birth=date(2018, 1, 1), weight=22)

        result = self.engine.calculate_dose(medication, patient, indication="Wheeze", now=date(2025, 6, 1))

        assert result.recommended_dose == "1.25 mg"
        assert result.indication == "Wheeze"

    def test_safety_info(self):
        medication = self.engine.find_medication("Prednisone")
        info = self.engine.get_drug_safety_info(medication, Patient(date_of_birth="1990-01-01"))

        assert info.safe_to_use
        assert info.pregnancy_category == "D"

    def test_interactions(self):
        report = self.engine.check_interactions_by_name(["Warfarin", "Naproxen"])
        assert report.has_severe

    def test_new_prescription_check(self):
        report = self.engine.check_new_prescription(["Digoxin", "Lisinopril"], "Amiodarone")

        assert len(report.moderate) == 1
        assert report.moderate[0].drug2 == "Amiodarone"

    def test_recommendation_resolves_through_formulary(self):
        context = PatientContext(is_pregnant=True, current_medications=["Warfarin"])
        payload = self.engine.get_protocol_recommendation("asthma", context)

        albuterol, prednisone = payload['recommendedMedications']
        assert albuterol['resolved'] is True
        assert albuterol['genericName'] == "Albuterol nebulizer"
        assert prednisone['pregnancyContraindicated'] is True
        assert prednisone['interactions'][0]['medication'] == "Warfarin"
        assert [m['name'] for m in payload['safeMedications']] == ["Albuterol nebulizer"]

    def test_search_and_lookups(self):
        assert [p.id for p in self.engine.search_protocols("exacerbation")] == [
            "asthma-exacerbation", "copd-exacerbation"
        ]
        assert len(self.engine.get_protocols_by_category("Infectious")) == 2
        assert self.engine.get_protocols_by_icd("I10")[0].id == "essential-hypertension"

class TestEngineConfiguration:
    """Configuration edge cases"""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        shutil.copy(DEFAULT_CONFIG_DIR / "rules.yaml", self.temp_dir / "rules.yaml")

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_optional_files_missing(self):
        engine = ClinicalDecisionEngine(self.temp_dir)

        assert engine.protocols == ()
        assert engine.formulary == ()
        assert engine.settings.pediatric_age_limit == 18

        payload = engine.get_protocol_recommendation("asthma", PatientContext())
        assert payload['found'] is False

    def test_settings_override(self):
        with open(self.temp_dir / "engine.yaml", 'w') as f:
            yaml.dump({'settings': {'geriatric_age_threshold': 60, 'disclaimer': 'Test disclaimer'}}, f)

        engine = ClinicalDecisionEngine(self.temp_dir)
        result = engine.calculate_dose(
            Medication(name="Amlodipine", standard_dose_adult="5 mg"),
            Patient(date_of_birth=date(1963, 1, 1)),
            now=date(2025, 6, 1)
        )

        assert engine.settings.disclaimer == "Test disclaimer"
        assert "Geriatric patient - consider starting at lower dose" in result.warnings

    def test_invalid_settings_raise(self):
        with open(self.temp_dir / "engine.yaml", 'w') as f:
            yaml.dump({'settings': {'pediatric_age_limit': 'eighteen'}}, f)

        with pytest.raises(DecisionSupportError) as exc_info:
            ClinicalDecisionEngine(self.temp_dir)
        assert exc_info.value.error_code == ErrorCode.CFG_INVALID_CONFIG

    def test_missing_rules_raise(self):
        os.unlink(self.temp_dir / "rules.yaml")

        with pytest.raises(DecisionSupportError) as exc_info:
            ClinicalDecisionEngine(self.temp_dir)
        assert exc_info.value.error_code == ErrorCode.CFG_FILE_NOT_FOUND

    def test_invalid_formulary_raises(self):
        with open(self.temp_dir / "formulary.yaml", 'w') as f:
            yaml.dump({'medications': [{'generic_name': 'nameless'}]}, f)

        with pytest.raises(DecisionSupportError) as exc_info:
            ClinicalDecisionEngine(self.temp_dir)
        assert exc_info.value.error_code == ErrorCode.CFG_INVALID_CONFIG

    def test_injected_medications_and_protocols(self):
        engine = ClinicalDecisionEngine(
            self.temp_dir,
            medications=[Medication(name="Warfarin")],
            protocols=[]
        )

        assert engine.find_medication("warfarin").name == "Warfarin"
        assert engine.protocols == ()
