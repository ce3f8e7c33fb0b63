"""
Pairwise drug-drug interaction detection over a list of medication names
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .rules import InteractionRule, RuleTables, default_rule_tables
from .schema import InteractionSeverity

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class InteractionRecord:
    drug1: str
    drug2: str
    severity: InteractionSeverity
    description: str
    recommendation: str = ""

    def to_dict(self) -> Dict[str, str]:
        record = {
            'drug1': self.drug1,
            'drug2': self.drug2,
            'description': self.description
        }
        # Mild entries carry no recommendation
        if self.severity != InteractionSeverity.MILD:
            record['recommendation'] = self.recommendation
        return record

@dataclass
class InteractionReport:
    severe: List[InteractionRecord] = field(default_factory=list)
    moderate: List[InteractionRecord] = field(default_factory=list)
    mild: List[InteractionRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.severe) + len(self.moderate) + len(self.mild)

    @property
    def has_severe(self) -> bool:
        return bool(self.severe)

    def add(self, record: InteractionRecord):
        if record.severity == InteractionSeverity.SEVERE:
            self.severe.append(record)
        elif record.severity == InteractionSeverity.MODERATE:
            self.moderate.append(record)
        else:
            self.mild.append(record)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            'severe': [r.to_dict() for r in self.severe],
            'moderate': [r.to_dict() for r in self.moderate],
            'mild': [r.to_dict() for r in self.mild]
        }

def _matches(patterns, name: str) -> bool:
    return any(pattern in name for pattern in patterns)

def rule_fires(rule: InteractionRule, name_a: str, name_b: str) -> bool:
    """Test a rule in both directions; names must already be lower-case"""
    forward = _matches(rule.drug1_patterns, name_a) and _matches(rule.drug2_patterns, name_b)
    reverse = _matches(rule.drug1_patterns, name_b) and _matches(rule.drug2_patterns, name_a)
    return forward or reverse

def check_interactions_by_name(
    medication_names: Sequence[str],
    rules: Optional[RuleTables] = None
) -> InteractionReport:
    """
    Compare every unordered pair of medication names against the interaction table.

    Every rule that fires for a pair is recorded, bucketed by severity.
    Names are never compared against themselves (by position or by repeated
    spelling), so a single-element list returns empty buckets.
    """
    rules = rules or default_rule_tables()
    report = InteractionReport()
    normalized = [name.lower() for name in medication_names]

    for i in range(len(normalized)):
        for j in range(i + 1, len(normalized)):
            if normalized[i] == normalized[j]:
                continue
            for rule in rules.interaction_rules:
                if rule_fires(rule, normalized[i], normalized[j]):
                    report.add(InteractionRecord(
                        drug1=medication_names[i],
                        drug2=medication_names[j],
                        severity=rule.severity,
                        description=rule.description,
                        recommendation=rule.recommendation
                    ))

    if report.total:
        logger.info(
            f"Interaction check over {len(medication_names)} medications: "
            f"{len(report.severe)} severe, {len(report.moderate)} moderate, {len(report.mild)} mild"
        )
    return report
