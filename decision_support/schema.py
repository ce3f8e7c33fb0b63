"""
Pydantic schemas for decision-support reference data and engine settings
"""

from pydantic import BaseModel, ConfigDict, field_validator
from typing import List, Optional, Literal, Union
from datetime import date, datetime
from enum import Enum

class ProtocolSeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    LIFE_THREATENING = "life-threatening"

class InteractionSeverity(str, Enum):
    SEVERE = "severe"
    MODERATE = "moderate"
    MILD = "mild"

class OrganFunction(str, Enum):
    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

class Medication(BaseModel):
    """Formulary entry, supplied read-only by the data-management layer"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str
    generic_name: Optional[str] = None
    brand_names: List[str] = []
    category: str = ""

    # Product
    strength: str = ""
    route: str = ""
    dosing_frequency: Optional[str] = None
    max_daily_dose: Optional[str] = None

    # Dosing
    standard_dose_adult: Optional[str] = None
    standard_dose_pediatric: Optional[str] = None
    weight_based_dosing: bool = False
    weight_based_formula: Optional[str] = None  # "<number> mg/kg"

    # Organ function adjustments
    renal_adjustment: Optional[str] = None
    hepatic_adjustment: Optional[str] = None

    # Safety
    contraindications: List[str] = []
    monitoring_parameters: List[str] = []
    labs_required: List[str] = []
    black_box_warning: Optional[str] = None
    pregnancy_category: Optional[str] = None  # A/B/C/D/X, anything else is unclassified
    is_controlled: bool = False
    controlled_schedule: Optional[str] = None

    # Free-text interaction notes, e.g. "Warfarin - monitor INR"
    drug_interactions: List[str] = []

class Patient(BaseModel):
    """Patient record, supplied read-only by the data-management layer"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: Optional[str] = None
    date_of_birth: Union[datetime, date, str]
    weight: Optional[Union[float, str]] = None  # kg; strings come straight from the datastore
    allergies: List[str] = []
    chronic_conditions: List[str] = []
    renal_function: Optional[OrganFunction] = None
    hepatic_function: Optional[OrganFunction] = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _reject_numeric_birth_date(cls, v):
        # Numbers would otherwise be read as Unix timestamps
        if isinstance(v, (int, float)):
            raise ValueError("date_of_birth must be a date or ISO-8601 string, not a number")
        return v

class PatientContext(BaseModel):
    """Patient profile used when screening a protocol's medications"""
    model_config = ConfigDict(frozen=True)

    age_group: Optional[Literal["pediatric", "adult", "geriatric"]] = None
    weight: Optional[float] = None
    is_pregnant: bool = False
    allergies: List[str] = []
    current_medications: List[str] = []
    chronic_conditions: List[str] = []
    renal_function: Optional[OrganFunction] = None
    hepatic_function: Optional[OrganFunction] = None

class ProtocolStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: int
    action: str
    timing: Optional[str] = None
    notes: Optional[str] = None
    warnings: List[str] = []

class ProtocolMedication(BaseModel):
    """Medication entry as written in a protocol (name only, not a formulary record)"""
    model_config = ConfigDict(frozen=True)

    name: str
    dose: str
    route: str
    frequency: str
    duration: Optional[str] = None
    notes: Optional[str] = None

class TreatmentProtocol(BaseModel):
    """Named clinical management plan"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str
    icd_codes: List[str] = []
    description: str = ""
    severity: ProtocolSeverity
    steps: List[ProtocolStep] = []
    first_line_medications: List[ProtocolMedication] = []
    second_line_medications: List[ProtocolMedication] = []
    adjunctive_treatments: List[str] = []
    contraindications: List[str] = []
    warning_symptoms: List[str] = []
    referral_criteria: List[str] = []
    follow_up: str = ""
    references: List[str] = []
    last_updated: Optional[str] = None

class ProtocolVariant(BaseModel):
    """Delta applied to a ProtocolTemplate to produce one concrete protocol"""
    model_config = ConfigDict(frozen=True)

    suffix: str
    name_suffix: str = ""
    severity: Optional[ProtocolSeverity] = None
    additional_icd_codes: List[str] = []
    description_prefix: str = ""
    additional_steps: List[ProtocolStep] = []
    additional_medications: List[ProtocolMedication] = []
    additional_warnings: List[str] = []
    population: Optional[Literal["adult", "pediatric", "geriatric", "pregnant"]] = None

class ProtocolTemplate(BaseModel):
    """Shared base fields for a family of protocols"""
    model_config = ConfigDict(frozen=True)

    base_id: str
    base_name: str
    category: str
    base_icd_codes: List[str] = []
    base_description: str = ""
    base_severity: ProtocolSeverity
    variants: List[ProtocolVariant] = []
    base_steps: List[ProtocolStep] = []
    base_first_line_medications: List[ProtocolMedication] = []
    base_second_line_medications: List[ProtocolMedication] = []
    base_adjunctive_treatments: List[str] = []
    base_contraindications: List[str] = []
    base_warning_symptoms: List[str] = []
    base_referral_criteria: List[str] = []
    base_follow_up: str = ""
    base_references: List[str] = []

class EngineSettings(BaseModel):
    """Configuration for the decision-support engine"""
    model_config = ConfigDict(frozen=True)

    # Age buckets
    pediatric_age_limit: int = 18   # age < limit is pediatric
    geriatric_age_threshold: int = 65  # age >= threshold is geriatric

    # Pregnancy categories that exclude a protocol medication from the safe set
    pregnancy_contraindicated_categories: List[str] = ["D", "X"]

    # User-facing text
    disclaimer: str = (
        "This information is for clinical decision support only and is not a "
        "substitute for professional medical judgment. Verify all doses and "
        "recommendations before use."
    )
    protocol_not_found_message: str = (
        "No matching treatment protocol found. Please consult clinical "
        "guidelines or a specialist."
    )
