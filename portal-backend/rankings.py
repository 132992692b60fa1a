from typing import Any, Dict, List

from aggregates import round_half_up, to_number
from catalog import get_assignment, list_assignments


def batch_rankings(store, batch_id: str) -> List[Dict[str, Any]]:
    """Per-trainee score totals across every assignment of a batch, best first"""
    trainees: Dict[str, Dict[str, Any]] = {}

    for assignment in list_assignments(store, batch_id):
        name = assignment["assignmentName"]
        total_marks = to_number(assignment.get("totalMarks"))
        for submission in assignment.get("submissions") or []:
            trainee_id = submission.get("traineeId")
            ranking = trainees.setdefault(trainee_id, {
                "traineeId": trainee_id,
                "name": submission.get("name"),
                "email": submission.get("email"),
                "totalScore": 0,
                "assignmentsCompleted": 0,
                "totalPossibleMarks": 0,
                "lastSubmission": None,
                "submissions": [],
                "assignmentNames": [],
            })
            ranking["totalScore"] += to_number(submission.get("score"))
            ranking["assignmentsCompleted"] += 1
            ranking["totalPossibleMarks"] += total_marks
            if name not in ranking["assignmentNames"]:
                ranking["assignmentNames"].append(name)

            submitted_at = submission.get("submittedAt")
            if submitted_at and (ranking["lastSubmission"] is None or submitted_at > ranking["lastSubmission"]):
                ranking["lastSubmission"] = submitted_at

            ranking["submissions"].append({
                "assignmentId": assignment["assignmentId"],
                "assignmentName": name,
                "score": submission.get("score"),
                "totalMarks": assignment.get("totalMarks"),
                "submittedAt": submitted_at,
            })

    rankings = []
    for ranking in trainees.values():
        possible = ranking["totalPossibleMarks"]
        ranking["averageScore"] = round_half_up(ranking["totalScore"] / possible * 100) if possible > 0 else 0
        rankings.append(ranking)

    rankings.sort(key=lambda r: r["totalScore"], reverse=True)
    return rankings


def assignment_rankings(store, document_id: str, assignment_name: str) -> List[Dict[str, Any]]:
    assignment = get_assignment(store, document_id, assignment_name)
    submissions = list(assignment.get("submissions") or [])
    submissions.sort(key=lambda s: to_number(s.get("score")), reverse=True)
    return submissions
