"""
The six fixed scoring criteria.

Ids are stable: they are stored in event_scores.criterion_id and
effective_scores.criterion_id by the scoring pipeline.
"""

CRITERIA: dict[int, str] = {
    1: "it_security",
    2: "performance_degradation",
    3: "failure_prediction",
    4: "anomaly",
    5: "compliance_audit",
    6: "operational_risk",
}

CRITERION_IDS: tuple[int, ...] = tuple(sorted(CRITERIA))
