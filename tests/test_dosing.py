#!/usr/bin/env python3
"""
Unit tests for the dose resolver
"""

import pytest
from datetime import date
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from decision_support.dosing import calculate_dose, parse_weight_formula
from decision_support.errors import ErrorCode, ValidationError
from decision_support.schema import Medication, Patient

TODAY = date(2025, 6, 15)

ADULT_DOB = date(1985, 3, 1)
CHILD_DOB = date(2017, 2, 1)
ELDER_DOB = date(1945, 8, 20)

def make_medication(**overrides):
    data = {
        'name': 'Amoxicillin',
        'generic_name': 'amoxicillin',
        'category': 'Antibiotic',
        'strength': '500mg',
        'route': 'Oral',
        'dosing_frequency': 'Three times daily',
        'max_daily_dose': '3000mg',
        'standard_dose_adult': '500 mg',
        'standard_dose_pediatric': '250 mg'
    }
    data.update(overrides)
    return Medication(**data)

class TestDosePrecedence:
    """Weight-based > pediatric > adult > none"""

    def test_weight_based_dose(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="10mg/kg")
        patient = Patient(date_of_birth=CHILD_DOB, weight=20)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "200.0 mg"
        assert result.calculation_method.startswith("Weight-based")
        assert result.calculation_method == "Weight-based: 10mg/kg x 20.0kg = 200.0mg"

    def test_weight_based_decimal_rate(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="2.5 mg/kg")
        patient = Patient(date_of_birth=ADULT_DOB, weight=70)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "175.0 mg"

    def test_weight_from_string(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="10mg/kg")
        patient = Patient(date_of_birth=CHILD_DOB, weight="18.5")

        assert calculate_dose(medication, patient, now=TODAY).recommended_dose == "185.0 mg"

    def test_missing_weight_falls_back_to_pediatric_dose(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="10mg/kg")
        patient = Patient(date_of_birth=CHILD_DOB)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "250 mg"
        assert result.calculation_method == "Standard pediatric dose"

    def test_formula_ignored_without_weight_based_flag(self):
        medication = make_medication(weight_based_formula="10mg/kg")
        patient = Patient(date_of_birth=ADULT_DOB, weight=80)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "500 mg"
        assert result.calculation_method == "Standard adult dose"

    def test_child_without_pediatric_dose_gets_adult_dose(self):
        medication = make_medication(standard_dose_pediatric=None)
        patient = Patient(date_of_birth=CHILD_DOB)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "500 mg"
        assert "No pediatric-specific dosing available - consult pharmacist" in result.warnings

    def test_no_dosing_data(self):
        medication = make_medication(standard_dose_adult=None, standard_dose_pediatric=None)
        patient = Patient(date_of_birth=ADULT_DOB)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == ""
        assert not result.has_dose
        assert result.calculation_method == "No dosing data available"
        assert "No dosing data available - consult pharmacist" in result.warnings

    def test_malformed_formula_raises(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="ten per kilo")
        patient = Patient(date_of_birth=CHILD_DOB, weight=20)

        with pytest.raises(ValidationError) as exc_info:
            calculate_dose(medication, patient, now=TODAY)
        assert exc_info.value.error_code == ErrorCode.VAL_MALFORMED_WEIGHT_FORMULA

    def test_malformed_formula_raises_without_weight(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="per chart")

        with pytest.raises(ValidationError):
            calculate_dose(medication, Patient(date_of_birth=CHILD_DOB), now=TODAY)

    def test_parse_weight_formula(self):
        assert parse_weight_formula(make_medication(weight_based_formula="2.5 MG/KG every 6h")) == 2.5

    def test_leading_dot_rate_is_fractional(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula=".5 mg/kg")
        patient = Patient(date_of_birth=CHILD_DOB, weight=20)

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.recommended_dose == "10.0 mg"

    @pytest.mark.parametrize("formula", [
        "0.5-1 mg/kg",
        "0.5 - 1 mg/kg",
        "5 to 10 mg/kg",
        "10 mg/kg, max 40 mg/kg",
        "0 mg/kg",
        "1.5.2 mg/kg"
    ])
    def test_ambiguous_formula_raises(self, formula):
        medication = make_medication(weight_based_dosing=True, weight_based_formula=formula)
        patient = Patient(date_of_birth=CHILD_DOB, weight=20)

        with pytest.raises(ValidationError) as exc_info:
            calculate_dose(medication, patient, now=TODAY)
        assert exc_info.value.error_code == ErrorCode.VAL_MALFORMED_WEIGHT_FORMULA

    def test_calculation_method_keeps_full_weight(self):
        medication = make_medication(weight_based_dosing=True, weight_based_formula="1 mg/kg")
        patient = Patient(date_of_birth=ADULT_DOB, weight=100.12345)

        result = calculate_dose(medication, patient, now=TODAY)

        assert "x 100.12345kg" in result.calculation_method

class TestDoseWarnings:
    """Age, organ-function and regulatory annotations"""

    def test_pediatric_warning(self):
        result = calculate_dose(make_medication(), Patient(date_of_birth=CHILD_DOB), now=TODAY)
        assert "Pediatric patient - verify age-appropriate dosing" in result.warnings

    def test_geriatric_warnings_and_instruction(self):
        result = calculate_dose(make_medication(), Patient(date_of_birth=ELDER_DOB), now=TODAY)

        assert "Geriatric patient - consider starting at lower dose" in result.warnings
        assert "Monitor for increased sensitivity to medications" in result.warnings
        assert "Start low and titrate slowly" in result.special_instructions

    def test_adult_has_no_age_warnings(self):
        result = calculate_dose(make_medication(), Patient(date_of_birth=ADULT_DOB), now=TODAY)
        assert result.warnings == []

    def test_black_box_warning_is_first(self):
        medication = make_medication(
            black_box_warning="Risk of addiction and respiratory depression",
            is_controlled=True,
            controlled_schedule="II"
        )
        patient = Patient(date_of_birth=ELDER_DOB, chronic_conditions=["Chronic kidney disease"])

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.warnings[0] == "BLACK BOX WARNING: Risk of addiction and respiratory depression"
        assert result.warnings[-1] == "Controlled substance (Schedule II) - follow DEA regulations"
        assert "Document witness for administration" in result.special_instructions
        assert "Count verification required" in result.special_instructions

    def test_renal_adjustment(self):
        medication = make_medication(renal_adjustment="Reduce dose by 50% if CrCl < 30")
        patient = Patient(date_of_birth=ADULT_DOB, chronic_conditions=["Chronic Kidney Disease stage 3"])

        result = calculate_dose(medication, patient, now=TODAY)

        assert "Renal impairment - dose adjustment may be required" in result.warnings
        assert "Reduce dose by 50% if CrCl < 30" in result.special_instructions

    def test_renal_condition_without_adjustment_text(self):
        patient = Patient(date_of_birth=ADULT_DOB, chronic_conditions=["Renal insufficiency"])
        result = calculate_dose(make_medication(), patient, now=TODAY)
        assert result.warnings == []

    def test_hepatic_adjustment(self):
        medication = make_medication(hepatic_adjustment="Avoid in severe hepatic impairment")
        patient = Patient(date_of_birth=ADULT_DOB, chronic_conditions=["Fatty liver disease"])

        result = calculate_dose(medication, patient, now=TODAY)

        assert "Hepatic impairment - dose adjustment may be required" in result.warnings
        assert "Avoid in severe hepatic impairment" in result.special_instructions

    def test_monitoring_and_labs(self):
        medication = make_medication(
            monitoring_parameters=["Blood pressure"],
            labs_required=["BMP", "CBC"]
        )
        result = calculate_dose(medication, Patient(date_of_birth=ADULT_DOB), now=TODAY)
        assert result.requires_monitoring == ["Blood pressure", "Labs required: BMP, CBC"]

class TestDoseContraindications:
    """Allergy vs declared contraindications"""

    def test_allergy_matches_contraindication(self):
        medication = make_medication(contraindications=["Penicillin allergy"])
        patient = Patient(date_of_birth=ADULT_DOB, allergies=["Penicillin"])

        result = calculate_dose(medication, patient, now=TODAY)

        assert result.contraindicated
        assert result.contraindication_reasons == ["Patient allergy: penicillin"]

    def test_contraindication_inside_allergy_text(self):
        medication = make_medication(contraindications=["sulfa"])
        patient = Patient(date_of_birth=ADULT_DOB, allergies=["Sulfa drugs (rash)"])

        assert calculate_dose(medication, patient, now=TODAY).contraindicated

    def test_blank_allergy_matches_nothing(self):
        medication = make_medication(contraindications=["Penicillin allergy"])
        patient = Patient(date_of_birth=ADULT_DOB, allergies=["", "  "])

        assert not calculate_dose(medication, patient, now=TODAY).contraindicated

class TestDoseResultFields:
    """Passthrough and defaulted fields"""

    def test_defaults(self):
        medication = make_medication(strength="5 ml", dosing_frequency=None, max_daily_dose=None)
        result = calculate_dose(medication, Patient(date_of_birth=ADULT_DOB), indication="Otitis", now=TODAY)

        assert result.dose_unit == "ml"
        assert result.frequency == "As directed"
        assert result.max_daily_dose == "Consult pharmacist"
        assert result.route == "Oral"
        assert result.indication == "Otitis"

    def test_to_dict_keys(self):
        result = calculate_dose(make_medication(), Patient(date_of_birth=ADULT_DOB), now=TODAY)
        payload = result.to_dict()

        assert payload['recommendedDose'] == "500 mg"
        assert payload['doseUnit'] == "mg"
        assert payload['contraindicated'] is False
        assert 'calculationMethod' in payload
