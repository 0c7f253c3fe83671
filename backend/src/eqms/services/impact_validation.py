"""
Impact-assessment answer validation
Every answer must match its question's response type:
yes_no -> JSON boolean, rating -> integer 1..5
"""
from typing import Any, Iterable, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.exceptions import ValidationError
from eqms.db.mongo import Collections, NO_ID
from eqms.models.master_data import ResponseType

RATING_MIN = 1
RATING_MAX = 5


def check_answer(question: dict, answer: Any) -> None:
    """Raise ValidationError when answer does not fit the question"""
    response_type = question.get("response_type")
    text = question.get("question_text", question.get("id"))

    if response_type == ResponseType.YES_NO.value:
        if not isinstance(answer, bool):
            raise ValidationError(f"Answer to '{text}' must be true or false")
    elif response_type == ResponseType.RATING.value:
        # bool is a subclass of int
        if isinstance(answer, bool) or not isinstance(answer, int):
            raise ValidationError(f"Answer to '{text}' must be a whole number rating")
        if not RATING_MIN <= answer <= RATING_MAX:
            raise ValidationError(
                f"Answer to '{text}' must be a rating between {RATING_MIN} and {RATING_MAX}"
            )
    else:
        raise ValidationError(f"Question '{text}' has unsupported response type '{response_type}'")


async def validate_answers(db: AsyncIOMotorDatabase, answers: Iterable[Any]) -> List[dict]:
    """
    Validate a batch of answers against their questions
    Accepts ImpactAnswer models or plain dicts; one bad answer rejects the batch.
    Returns the answers as plain dicts ready to store.
    """
    normalized = [
        a.model_dump() if hasattr(a, "model_dump") else dict(a)
        for a in answers or []
    ]
    if not normalized:
        raise ValidationError("At least one answer is required")

    question_ids = list({a.get("question_id") for a in normalized})
    questions = await db[Collections.QUESTIONS].find(
        {"id": {"$in": question_ids}}, NO_ID
    ).to_list(length=None)
    by_id = {q["id"]: q for q in questions}

    for entry in normalized:
        question_id = entry.get("question_id")
        if not question_id:
            raise ValidationError("Each answer needs a question_id")
        question = by_id.get(question_id)
        if question is None:
            raise ValidationError(f"Invalid question ID: {question_id}")
        check_answer(question, entry.get("answer"))

    return [
        {
            "question_id": a["question_id"],
            "answer": a["answer"],
            "comment": (a.get("comment") or "").strip() or None,
        }
        for a in normalized
    ]
