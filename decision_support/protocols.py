#!/usr/bin/env python3
"""
Protocol Matcher & Recommendation Aggregator
Resolves free-text condition queries to treatment protocols and screens each
first-line medication against the patient's allergies, pregnancy status and
current medications.

Also holds the authoring-time template/variant expansion used to build the
protocol library.
"""

import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as SchemaValidationError

from .errors import DecisionSupportError, ErrorCode
from .rules import (DEFAULT_CONFIG_DIR, PROTOCOLS_FILE, RuleTables, read_yaml,
                    default_rule_tables)
from .schema import (EngineSettings, Medication, PatientContext, ProtocolMedication,
                     ProtocolSeverity, ProtocolTemplate, TreatmentProtocol)

logger = logging.getLogger(__name__)

MedicationLookup = Callable[[str], Optional[Medication]]

# ---------------------------------------------------------------------------
# Matching and lookups
# ---------------------------------------------------------------------------

def _protocol_matches(protocol: TreatmentProtocol, query_lower: str) -> bool:
    return (
        query_lower in protocol.name.lower() or
        query_lower in protocol.category.lower() or
        query_lower in protocol.description.lower()
    )

def search_protocols(query: str, protocols: Iterable[TreatmentProtocol]) -> List[TreatmentProtocol]:
    """All protocols whose name, category or description contain the query, in stored order"""
    query_lower = (query or "").strip().lower()
    if not query_lower:
        return []
    return [p for p in protocols if _protocol_matches(p, query_lower)]

def find_protocol(query: str, protocols: Iterable[TreatmentProtocol]) -> Optional[TreatmentProtocol]:
    """First matching protocol; no ranking, ties broken by list order"""
    query_lower = (query or "").strip().lower()
    if not query_lower:
        return None
    for protocol in protocols:
        if _protocol_matches(protocol, query_lower):
            return protocol
    return None

def get_protocol_by_id(protocol_id: str, protocols: Iterable[TreatmentProtocol]) -> Optional[TreatmentProtocol]:
    for protocol in protocols:
        if protocol.id == protocol_id:
            return protocol
    return None

def get_protocols_by_category(category: str, protocols: Iterable[TreatmentProtocol]) -> List[TreatmentProtocol]:
    category_lower = category.lower()
    return [p for p in protocols if category_lower in p.category.lower()]

def get_protocols_by_icd(icd_code: str, protocols: Iterable[TreatmentProtocol]) -> List[TreatmentProtocol]:
    """Protocols with any ICD code starting with icd_code (e.g. "J45" finds "J45.20")"""
    return [p for p in protocols if any(code.startswith(icd_code) for code in p.icd_codes)]

def get_protocols_by_severity(severity, protocols: Iterable[TreatmentProtocol]) -> List[TreatmentProtocol]:
    severity = ProtocolSeverity(severity)
    return [p for p in protocols if p.severity == severity]

# ---------------------------------------------------------------------------
# Recommendation aggregation
# ---------------------------------------------------------------------------

@dataclass
class MedicationRecommendation:
    """A protocol medication entry annotated for a specific patient"""
    entry: ProtocolMedication
    medication: Optional[Medication] = None
    contraindicated: bool = False
    contraindication_reasons: List[str] = field(default_factory=list)
    pregnancy_contraindicated: bool = False
    interactions: List[Dict[str, str]] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.medication is not None

    @property
    def is_safe(self) -> bool:
        return not self.contraindicated and not self.pregnancy_contraindicated

    def to_dict(self) -> Dict[str, Any]:
        result = self.entry.model_dump()
        result.update({
            'resolved': self.resolved,
            'genericName': self.medication.generic_name if self.medication else None,
            'pregnancyCategory': self.medication.pregnancy_category if self.medication else None,
            'blackBoxWarning': self.medication.black_box_warning if self.medication else None,
            'contraindicated': self.contraindicated,
            'contraindicationReasons': list(self.contraindication_reasons),
            'pregnancyContraindicated': self.pregnancy_contraindicated,
            'interactions': list(self.interactions)
        })
        return result

def _resolve_medication(name: str, lookup: Optional[MedicationLookup]) -> Optional[Medication]:
    if lookup is None:
        return None
    try:
        medication = lookup(name)
    except Exception as e:
        # Entry is reported unresolved
        logger.warning(f"Medication lookup failed for {name}: {e}", exc_info=True)
        return None
    if medication is None:
        logger.warning(f"Protocol medication {name} not found in formulary")
    return medication

def screen_protocol_medication(
    entry: ProtocolMedication,
    patient_context: PatientContext,
    medication: Optional[Medication] = None,
    settings: Optional[EngineSettings] = None
) -> MedicationRecommendation:
    """Annotate one protocol medication entry for the patient"""
    settings = settings or EngineSettings()
    name_lower = entry.name.lower()

    reasons = [
        f"Patient allergy: {allergy}"
        for allergy in patient_context.allergies
        if allergy.strip() and allergy.strip().lower() in name_lower
    ]

    pregnancy_contraindicated = False
    if patient_context.is_pregnant and medication is not None:
        category = (medication.pregnancy_category or "").strip().upper()
        excluded = {c.upper() for c in settings.pregnancy_contraindicated_categories}
        pregnancy_contraindicated = category in excluded

    interactions = []
    if medication is not None:
        declared = [(note, note.lower()) for note in medication.drug_interactions]
        for current in patient_context.current_medications:
            current_lower = current.strip().lower()
            if not current_lower:
                continue
            for note, note_lower in declared:
                if current_lower in note_lower:
                    interactions.append({'medication': current, 'detail': note})
                    break

    return MedicationRecommendation(
        entry=entry,
        medication=medication,
        contraindicated=bool(reasons),
        contraindication_reasons=reasons,
        pregnancy_contraindicated=pregnancy_contraindicated,
        interactions=interactions
    )

def _protocol_summary(protocol: TreatmentProtocol) -> Dict[str, Any]:
    return {
        'id': protocol.id,
        'name': protocol.name,
        'category': protocol.category,
        'icdCodes': list(protocol.icd_codes),
        'description': protocol.description,
        'severity': protocol.severity.value,
        'lastUpdated': protocol.last_updated
    }

def get_protocol_recommendation(
    query: str,
    patient_context: PatientContext,
    protocols: Sequence[TreatmentProtocol],
    medication_lookup: Optional[MedicationLookup] = None,
    rules: Optional[RuleTables] = None,
    settings: Optional[EngineSettings] = None
) -> Dict[str, Any]:
    """
    Match a condition query to a protocol and build a safety-annotated recommendation.

    Never raises for an unmatched query; returns found=False with generic
    advice instead. On a match, recommendedMedications holds every
    first-line entry and safeMedications only those that are neither
    allergy- nor pregnancy-contraindicated.
    """
    rules = rules or default_rule_tables()
    settings = settings or EngineSettings()

    protocol = find_protocol(query, protocols)
    if protocol is None:
        logger.info(f"No protocol matched query {query!r}")
        return {
            'found': False,
            'query': query,
            'message': settings.protocol_not_found_message,
            'generalAdvice': list(rules.general_advice),
            'disclaimer': settings.disclaimer
        }

    recommendations = [
        screen_protocol_medication(
            entry,
            patient_context,
            medication=_resolve_medication(entry.name, medication_lookup),
            settings=settings
        )
        for entry in protocol.first_line_medications
    ]
    safe = [r for r in recommendations if r.is_safe]

    logger.info(
        f"Protocol {protocol.id} matched {query!r}: "
        f"{len(safe)}/{len(recommendations)} first-line medications safe"
    )

    return {
        'found': True,
        'query': query,
        'protocol': _protocol_summary(protocol),
        'steps': [step.model_dump() for step in protocol.steps],
        'recommendedMedications': [r.to_dict() for r in recommendations],
        'safeMedications': [r.to_dict() for r in safe],
        'secondLineMedications': [m.model_dump() for m in protocol.second_line_medications],
        'adjunctiveTreatments': list(protocol.adjunctive_treatments),
        'contraindications': list(protocol.contraindications),
        'warningSymptoms': list(protocol.warning_symptoms),
        'referralCriteria': list(protocol.referral_criteria),
        'followUp': protocol.follow_up,
        'references': list(protocol.references),
        'disclaimer': settings.disclaimer
    }

# ---------------------------------------------------------------------------
# Template expansion (authoring time)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeverityVariantSpec:
    severity: ProtocolSeverity
    suffix: str
    modifications: Dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class AgeGroupSpec:
    group: str
    suffix: str

def _slug(name: str) -> str:
    return re.sub(r'\s+', '-', name.lower())

def generate_protocols_from_template(
    template: ProtocolTemplate,
    last_updated: Optional[str] = None
) -> List[TreatmentProtocol]:
    """One concrete protocol per variant: base lists + variant lists, optional severity override"""
    protocols = []

    for variant in template.variants:
        population_prefix = f"{variant.population.capitalize()} " if variant.population else ""

        protocols.append(TreatmentProtocol(
            id=f"{template.base_id}-{variant.suffix}",
            name=f"{population_prefix}{template.base_name}{variant.name_suffix}",
            category=template.category,
            icd_codes=[*template.base_icd_codes, *variant.additional_icd_codes],
            description=f"{variant.description_prefix}{template.base_description}",
            severity=variant.severity or template.base_severity,
            steps=[*template.base_steps, *variant.additional_steps],
            first_line_medications=list(template.base_first_line_medications),
            second_line_medications=[
                *template.base_second_line_medications,
                *variant.additional_medications
            ],
            adjunctive_treatments=list(template.base_adjunctive_treatments),
            contraindications=list(template.base_contraindications),
            warning_symptoms=[*template.base_warning_symptoms, *variant.additional_warnings],
            referral_criteria=list(template.base_referral_criteria),
            follow_up=template.base_follow_up,
            references=list(template.base_references),
            last_updated=last_updated
        ))

    return protocols

def generate_severity_variants(
    base: TreatmentProtocol,
    severities: Sequence[SeverityVariantSpec],
    last_updated: Optional[str] = None
) -> List[TreatmentProtocol]:
    """Copies of base at each severity; modifications override fields"""
    base_data = base.model_dump()
    return [
        TreatmentProtocol.model_validate({
            **base_data,
            'id': f"{_slug(base.name)}-{spec.suffix}",
            'severity': spec.severity,
            **spec.modifications,
            'last_updated': last_updated
        })
        for spec in severities
    ]

def generate_age_group_variants(
    base: TreatmentProtocol,
    age_groups: Sequence[AgeGroupSpec],
    last_updated: Optional[str] = None
) -> List[TreatmentProtocol]:
    """Copies of base per age group with group-specific names and first-line dosing notes"""
    base_data = base.model_dump()
    variants = []
    for spec in age_groups:
        medications = [
            {
                **med.model_dump(),
                'notes': f"{med.notes} ({spec.group} dosing)" if med.notes else f"{spec.group} dosing applies"
            }
            for med in base.first_line_medications
        ]
        variants.append(TreatmentProtocol.model_validate({
            **base_data,
            'id': f"{_slug(base.name)}-{spec.suffix}",
            'name': f"{spec.group} {base.name}",
            'description': f"{spec.group}-specific: {base.description}",
            'first_line_medications': medications,
            'last_updated': last_updated
        }))
    return variants

# ---------------------------------------------------------------------------
# Library loading
# ---------------------------------------------------------------------------

def build_protocol_library(data: Dict[str, Any]) -> Tuple[TreatmentProtocol, ...]:
    """Plain protocols in file order, followed by the expansion of each template"""
    try:
        protocols = [TreatmentProtocol.model_validate(raw) for raw in data.get('protocols', [])]
        for raw_template in data.get('templates', []):
            template = ProtocolTemplate.model_validate(raw_template)
            protocols.extend(generate_protocols_from_template(
                template, last_updated=raw_template.get('last_updated')
            ))
    except SchemaValidationError as e:
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_INVALID_PROTOCOL,
            message="Protocol library contains an invalid entry",
            details={"errors": str(e)},
            original_exception=e
        )

    seen = set()
    for protocol in protocols:
        if protocol.id in seen:
            logger.warning(f"Duplicate protocol id {protocol.id}; lookups by id return the first")
        seen.add(protocol.id)

    return tuple(protocols)

def load_protocol_library(config_dir: Optional[Path] = None) -> Tuple[TreatmentProtocol, ...]:
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    protocols_file = config_dir / PROTOCOLS_FILE
    if not protocols_file.exists():
        logger.warning(f"Protocol library {protocols_file} not found, starting with no protocols")
        return ()

    library = build_protocol_library(read_yaml(protocols_file))
    logger.info(f"Loaded {len(library)} treatment protocols from {protocols_file}")
    return library
