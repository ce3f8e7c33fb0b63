#!/usr/bin/env python3
"""
Dose Resolver
Picks a dose expression for a medication/patient pair and annotates it with
age, allergy, organ-function and regulatory warnings.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Union, Any

from .demographics import PatientDemographics, resolve_demographics
from .errors import malformed_formula_error
from .rules import RuleTables, default_rule_tables, mentions_any
from .schema import EngineSettings, Medication, Patient

logger = logging.getLogger(__name__)

WEIGHT_FORMULA_PATTERN = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?|\.\d+)\s*mg/kg", re.IGNORECASE)
# A rate written as the upper bound of a range or with a sign
AMBIGUOUS_PREFIX_PATTERN = re.compile(r"(?:[-+\u2013]|\bto)\s*$", re.IGNORECASE)

@dataclass
class DoseResult:
    recommended_dose: str
    dose_unit: str
    frequency: str
    route: str
    max_daily_dose: str
    warnings: List[str] = field(default_factory=list)
    contraindicated: bool = False
    contraindication_reasons: List[str] = field(default_factory=list)
    requires_monitoring: List[str] = field(default_factory=list)
    special_instructions: List[str] = field(default_factory=list)
    calculation_method: str = ""
    indication: Optional[str] = None

    @property
    def has_dose(self) -> bool:
        return bool(self.recommended_dose)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'recommendedDose': self.recommended_dose,
            'doseUnit': self.dose_unit,
            'frequency': self.frequency,
            'route': self.route,
            'maxDailyDose': self.max_daily_dose,
            'warnings': list(self.warnings),
            'contraindicated': self.contraindicated,
            'contraindicationReasons': list(self.contraindication_reasons),
            'requiresMonitoring': list(self.requires_monitoring),
            'specialInstructions': list(self.special_instructions),
            'calculationMethod': self.calculation_method,
            'indication': self.indication
        }

def parse_weight_formula(medication: Medication) -> float:
    """
    mg/kg rate from the medication's formula.

    The formula must state exactly one positive rate. Ranges ("0.5-1 mg/kg"),
    signed rates, conflicting rates and formulas without a rate raise
    ValidationError. A leading-dot rate (".5 mg/kg") reads as 0.5.
    """
    formula = medication.weight_based_formula or ""
    rates = set()
    for match in WEIGHT_FORMULA_PATTERN.finditer(formula):
        if AMBIGUOUS_PREFIX_PATTERN.search(formula[:match.start()]):
            raise malformed_formula_error(medication.name, formula)
        rates.add(float(match.group(1)))

    if len(rates) != 1:
        raise malformed_formula_error(medication.name, formula)
    rate = rates.pop()
    if rate <= 0:
        raise malformed_formula_error(medication.name, formula)
    return rate

def _select_dose(medication: Medication, demographics: PatientDemographics):
    """Return (dose string, calculation method) by precedence"""
    weight = demographics.weight_kg

    if medication.weight_based_dosing and medication.weight_based_formula:
        # Corrupt formulas fail even when the weight is unknown
        mg_per_kg = parse_weight_formula(medication)
        if weight:
            dose_mg = mg_per_kg * weight
            return (
                f"{dose_mg:.1f} mg",
                f"Weight-based: {medication.weight_based_formula} x {weight}kg = {dose_mg:.1f}mg"
            )
        logger.debug(f"{medication.name}: no usable weight, falling back to standard dose")

    if demographics.is_pediatric and medication.standard_dose_pediatric:
        return medication.standard_dose_pediatric, "Standard pediatric dose"

    if medication.standard_dose_adult:
        return medication.standard_dose_adult, "Standard adult dose"

    return "", "No dosing data available"

def _dose_unit(strength: str) -> str:
    strength = strength or ""
    if "mg" in strength:
        return "mg"
    if "ml" in strength:
        return "ml"
    return "units"

def _allergy_contraindications(medication: Medication, patient: Patient) -> List[str]:
    """Allergy/contraindication overlaps, substring tested in both directions"""
    reasons = []
    # Blank entries would match everything
    allergies = [a.strip().lower() for a in patient.allergies if a.strip()]
    contraindications = [c.strip().lower() for c in medication.contraindications if c.strip()]

    for allergy in allergies:
        for contraindication in contraindications:
            if contraindication in allergy or allergy in contraindication:
                reasons.append(f"Patient allergy: {allergy}")
    return reasons

def calculate_dose(
    medication: Medication,
    patient: Patient,
    indication: Optional[str] = None,
    now: Optional[Union[date, datetime]] = None,
    rules: Optional[RuleTables] = None,
    settings: Optional[EngineSettings] = None
) -> DoseResult:
    """
    Calculate the recommended dose of a medication for a patient.

    Dose precedence (first match wins):
        1. weight-based formula x known weight
        2. pediatric standard dose for pediatric patients
        3. adult standard dose
        4. empty dose, flagged as missing dosing data

    Missing optional data never raises. An invalid birth date or a
    weight-based formula that cannot be parsed raises ValidationError.
    """
    rules = rules or default_rule_tables()
    demographics = resolve_demographics(patient, now=now, settings=settings)

    warnings: List[str] = []
    special_instructions: List[str] = []
    requires_monitoring: List[str] = []

    recommended_dose, calculation_method = _select_dose(medication, demographics)
    if not recommended_dose:
        warnings.append("No dosing data available - consult pharmacist")

    # Age-based adjustments
    if demographics.is_pediatric:
        warnings.append("Pediatric patient - verify age-appropriate dosing")
        if not medication.standard_dose_pediatric and not medication.weight_based_formula:
            warnings.append("No pediatric-specific dosing available - consult pharmacist")

    if demographics.is_geriatric:
        warnings.append("Geriatric patient - consider starting at lower dose")
        warnings.append("Monitor for increased sensitivity to medications")
        special_instructions.append("Start low and titrate slowly")

    contraindication_reasons = _allergy_contraindications(medication, patient)

    # Organ function
    if mentions_any(patient.chronic_conditions, rules.dose_conditions.renal) and medication.renal_adjustment:
        warnings.append("Renal impairment - dose adjustment may be required")
        special_instructions.append(medication.renal_adjustment)

    if mentions_any(patient.chronic_conditions, rules.dose_conditions.hepatic) and medication.hepatic_adjustment:
        warnings.append("Hepatic impairment - dose adjustment may be required")
        special_instructions.append(medication.hepatic_adjustment)

    requires_monitoring.extend(medication.monitoring_parameters)
    if medication.labs_required:
        requires_monitoring.append(f"Labs required: {', '.join(medication.labs_required)}")

    if medication.black_box_warning:
        warnings.insert(0, f"BLACK BOX WARNING: {medication.black_box_warning}")

    if medication.is_controlled:
        warnings.append(
            f"Controlled substance (Schedule {medication.controlled_schedule}) - follow DEA regulations"
        )
        special_instructions.append("Document witness for administration")
        special_instructions.append("Count verification required")

    if contraindication_reasons:
        logger.info(f"{medication.name} flagged as contraindicated: {'; '.join(contraindication_reasons)}")

    return DoseResult(
        recommended_dose=recommended_dose,
        dose_unit=_dose_unit(medication.strength),
        frequency=medication.dosing_frequency or "As directed",
        route=medication.route,
        max_daily_dose=medication.max_daily_dose or "Consult pharmacist",
        warnings=warnings,
        contraindicated=bool(contraindication_reasons),
        contraindication_reasons=contraindication_reasons,
        requires_monitoring=requires_monitoring,
        special_instructions=special_instructions,
        calculation_method=calculation_method,
        indication=indication
    )
