"""
Allergy & Cross-Reactivity Screener

Screens one medication against a patient's allergy list, chronic conditions
and the medication's own safety fields. Usable without a dose calculation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .rules import RuleTables, default_rule_tables, mentions_any
from .schema import Medication, Patient

logger = logging.getLogger(__name__)

UNCLASSIFIED_PREGNANCY_CATEGORY = "Not classified"
UNCLASSIFIED_PREGNANCY_WARNING = "Consult physician regarding pregnancy safety"

@dataclass
class SafetyInfo:
    safe_to_use: bool
    warnings: List[str] = field(default_factory=list)
    contraindications: List[str] = field(default_factory=list)
    allergy_risk: bool = False
    allergy_details: List[str] = field(default_factory=list)
    renal_caution: bool = False
    renal_details: str = ""
    hepatic_caution: bool = False
    hepatic_details: str = ""
    pregnancy_category: str = UNCLASSIFIED_PREGNANCY_CATEGORY
    pregnancy_warning: str = UNCLASSIFIED_PREGNANCY_WARNING
    monitoring_required: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'safeToUse': self.safe_to_use,
            'warnings': list(self.warnings),
            'contraindications': list(self.contraindications),
            'allergyRisk': self.allergy_risk,
            'allergyDetails': list(self.allergy_details),
            'renalCaution': self.renal_caution,
            'renalDetails': self.renal_details,
            'hepaticCaution': self.hepatic_caution,
            'hepaticDetails': self.hepatic_details,
            'pregnancyCategory': self.pregnancy_category,
            'pregnancyWarning': self.pregnancy_warning,
            'monitoringRequired': list(self.monitoring_required)
        }

def find_direct_allergy_matches(medication: Medication, allergies: List[str]) -> List[str]:
    """Allergies that appear in the medication's name, generic name or category"""
    fields = [
        medication.name.lower(),
        (medication.generic_name or "").lower(),
        medication.category.lower()
    ]
    details = []
    for allergy in allergies:
        allergy_lower = allergy.strip().lower()
        if not allergy_lower:
            continue
        if any(allergy_lower in value for value in fields if value):
            details.append(f"Direct allergy match: {allergy}")
    return details

def find_cross_reactivity(
    medication: Medication,
    allergies: List[str],
    rules: Optional[RuleTables] = None
) -> List[str]:
    """Allergies whose allergen class includes a substance found in the medication's names"""
    rules = rules or default_rule_tables()
    names = [medication.name.lower(), (medication.generic_name or "").lower()]
    details = []

    for allergy in allergies:
        allergy_lower = allergy.lower()
        for allergen, related_substances in rules.cross_reactivity.items():
            if allergen not in allergy_lower:
                continue
            for related in related_substances:
                if any(related in name for name in names if name):
                    logger.debug(f"Cross-reactivity: {allergy} ({allergen}) -> {medication.name} via {related}")
                    details.append(f"Cross-reactivity risk: {allergy} -> {medication.name}")
    return details

def pregnancy_text(category: Optional[str], rules: Optional[RuleTables] = None):
    """(category label, explanation) for a pregnancy category"""
    rules = rules or default_rule_tables()
    key = (category or "").strip().upper()
    if key in rules.pregnancy_categories:
        return key, rules.pregnancy_categories[key]
    # Unknown labels are reported as recorded
    return (category or "").strip() or UNCLASSIFIED_PREGNANCY_CATEGORY, UNCLASSIFIED_PREGNANCY_WARNING

def get_drug_safety_info(
    medication: Medication,
    patient: Patient,
    rules: Optional[RuleTables] = None
) -> SafetyInfo:
    """
    Build the safety profile of a medication for a specific patient.

    allergy_risk is raised by a direct name/category match or by a
    cross-reactivity class match. safe_to_use is false when there is an
    allergy risk or the medication declares any contraindication.
    """
    rules = rules or default_rule_tables()
    warnings: List[str] = []

    allergy_details = find_direct_allergy_matches(medication, patient.allergies)
    allergy_details.extend(find_cross_reactivity(medication, patient.allergies, rules))
    allergy_risk = bool(allergy_details)

    renal_caution = mentions_any(patient.chronic_conditions, rules.safety_conditions.renal)
    renal_details = ""
    if renal_caution:
        renal_details = medication.renal_adjustment or "Consult pharmacist for renal dosing adjustments"
        warnings.append("Renal impairment detected - dosing adjustment may be required")

    hepatic_caution = mentions_any(patient.chronic_conditions, rules.safety_conditions.hepatic)
    hepatic_details = ""
    if hepatic_caution:
        hepatic_details = medication.hepatic_adjustment or "Consult pharmacist for hepatic dosing adjustments"
        warnings.append("Hepatic impairment detected - dosing adjustment may be required")

    contraindications = list(medication.contraindications)
    monitoring_required = list(medication.monitoring_parameters) + list(medication.labs_required)

    if medication.black_box_warning:
        warnings.insert(0, f"BLACK BOX WARNING: {medication.black_box_warning}")

    category, pregnancy_warning = pregnancy_text(medication.pregnancy_category, rules)

    return SafetyInfo(
        safe_to_use=not allergy_risk and not contraindications,
        warnings=warnings,
        contraindications=contraindications,
        allergy_risk=allergy_risk,
        allergy_details=allergy_details,
        renal_caution=renal_caution,
        renal_details=renal_details,
        hepatic_caution=hepatic_caution,
        hepatic_details=hepatic_details,
        pregnancy_category=category,
        pregnancy_warning=pregnancy_warning,
        monitoring_required=monitoring_required
    )
