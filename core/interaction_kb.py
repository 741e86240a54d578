"""
Local medication and condition knowledge base.

Static reference data for the rule-based half of safety validation.
Medication names are matched case-insensitively on the whole name;
conditions are matched by keyword containment.
"""

from typing import Optional, TypedDict


class SubstanceInteraction(TypedDict):
    substance: str
    severity: str
    description: str
    recommendation: str


class MedicationProfile(TypedDict):
    interactions: list[SubstanceInteraction]
    contraindications: list[str]
    warnings: list[str]


class ConditionRisk(TypedDict):
    keyword: str
    severity: str
    description: str
    recommendation: str


MEDICATION_INTERACTIONS: dict[str, MedicationProfile] = {
    "warfarin": {
        "interactions": [
            {
                "substance": "garlic",
                "severity": "medium",
                "description": "Garlic may increase the anticoagulant effect of warfarin",
                "recommendation": "Monitor INR closely if consuming large amounts of garlic",
            },
            {
                "substance": "turmeric",
                "severity": "medium",
                "description": "Turmeric may enhance the anticoagulant effect",
                "recommendation": "Avoid high doses of turmeric supplements",
            },
            {
                "substance": "ginger",
                "severity": "low",
                "description": "Ginger may have mild anticoagulant effects",
                "recommendation": "Use moderate amounts, monitor for bleeding",
            },
        ],
        "contraindications": ["active bleeding", "severe liver disease"],
        "warnings": ["Monitor INR regularly", "Avoid alcohol excess", "Report unusual bleeding"],
    },
    "insulin": {
        "interactions": [
            {
                "substance": "chromium",
                "severity": "medium",
                "description": "Chromium may enhance insulin sensitivity",
                "recommendation": "Monitor blood glucose closely",
            },
            {
                "substance": "cinnamon",
                "severity": "low",
                "description": "Cinnamon may lower blood glucose",
                "recommendation": "Monitor blood sugar when using cinnamon supplements",
            },
        ],
        "contraindications": ["hypoglycemia"],
        "warnings": ["Monitor blood glucose regularly", "Adjust dosing as needed"],
    },
    "metformin": {
        "interactions": [
            {
                "substance": "berberine",
                "severity": "medium",
                "description": "Berberine may enhance glucose-lowering effects",
                "recommendation": "Monitor blood glucose closely",
            },
        ],
        "contraindications": ["severe kidney disease", "severe liver disease"],
        "warnings": ["Monitor kidney function", "Stop before contrast procedures"],
    },
    "lisinopril": {
        "interactions": [
            {
                "substance": "potassium",
                "severity": "high",
                "description": "ACE inhibitors can increase potassium levels",
                "recommendation": "Avoid high-potassium supplements and foods",
            },
        ],
        "contraindications": ["pregnancy", "angioedema history"],
        "warnings": ["Monitor kidney function and potassium levels"],
    },
    "synthroid": {
        "interactions": [
            {
                "substance": "soy",
                "severity": "medium",
                "description": "Soy may interfere with thyroid hormone absorption",
                "recommendation": "Take thyroid medication 4 hours before soy consumption",
            },
            {
                "substance": "calcium",
                "severity": "medium",
                "description": "Calcium can reduce thyroid hormone absorption",
                "recommendation": "Take thyroid medication 4 hours before calcium supplements",
            },
        ],
        "contraindications": ["untreated adrenal insufficiency"],
        "warnings": ["Take on empty stomach", "Monitor thyroid function"],
    },
}


# Checked in order; the first keyword contained in a condition wins
CONDITION_RISKS: list[ConditionRisk] = [
    {
        "keyword": "pregnancy",
        "severity": "high",
        "description": "Many protocol components are not safe during pregnancy",
        "recommendation": "Avoid detox and cleanse protocols during pregnancy. "
                          "Focus on gentle, pregnancy-safe nutrition.",
    },
    {
        "keyword": "breastfeeding",
        "severity": "high",
        "description": "Cleanse protocols can affect breast milk quality",
        "recommendation": "Avoid intensive protocols while breastfeeding. "
                          "Focus on gentle, nourishing foods.",
    },
    {
        "keyword": "kidney disease",
        "severity": "high",
        "description": "Kidney disease requires careful monitoring of protein and electrolyte intake",
        "recommendation": "Require healthcare provider approval. Monitor kidney function closely.",
    },
    {
        "keyword": "liver disease",
        "severity": "high",
        "description": "Liver disease affects detoxification and supplement metabolism",
        "recommendation": "Require healthcare provider approval. Avoid detox protocols.",
    },
    {
        "keyword": "diabetes",
        "severity": "medium",
        "description": "Dietary changes can affect blood sugar control",
        "recommendation": "Monitor blood glucose closely. "
                          "Adjust medications as needed with healthcare provider.",
    },
    {
        "keyword": "heart disease",
        "severity": "medium",
        "description": "Heart conditions may be affected by dietary and supplement changes",
        "recommendation": "Monitor cardiovascular symptoms. Ensure adequate nutrition.",
    },
    {
        "keyword": "high blood pressure",
        "severity": "medium",
        "description": "Some protocol components may affect blood pressure",
        "recommendation": "Monitor blood pressure regularly. Be cautious with sodium and supplements.",
    },
]


GENERAL_RECOMMENDATIONS = [
    "Consult with your healthcare provider before starting this protocol",
    "Monitor for any unusual symptoms or side effects",
    "Inform your healthcare provider of any changes in medications",
]


def lookup_medication(name: str) -> Optional[MedicationProfile]:
    """Profile for a medication name (case-insensitive), or None if unknown."""
    return MEDICATION_INTERACTIONS.get(name.strip().lower())


def match_condition(condition: str) -> Optional[ConditionRisk]:
    """First risk entry whose keyword appears in the condition text."""
    lowered = condition.lower()
    for risk in CONDITION_RISKS:
        if risk["keyword"] in lowered:
            return risk
    return None
