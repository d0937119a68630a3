"""Equivalence judge used by the mastery grader.

A deterministic comparison runs first; only answers it cannot decide are
sent to the Content Generator, which must reply with a bare true/false.
"""

import logging

from mastery_engine.errors import JudgeError
from mastery_engine.services.ai_client import ai_chat
from mastery_engine.services.math_equivalence import check_equivalence
from mastery_engine.services.prompts import load_prompt

logger = logging.getLogger(__name__)


async def judge_answer(student_answer: str, correct_answer: str) -> bool:
    """Return whether student_answer is mathematically equivalent to correct_answer."""
    verdict = check_equivalence(student_answer, correct_answer)
    if verdict is not None:
        return verdict

    prompt = load_prompt("answer_judge.yaml")
    content = await ai_chat(
        messages=[
            {"role": "system", "content": prompt["system_prompt"]},
            {"role": "user", "content": prompt["user_template"].format(
                student_answer=student_answer,
                correct_answer=correct_answer,
            )},
        ],
        use_case="judge",
        temperature=0,
        max_tokens=10,
    )
    text = (content or "").strip().strip(".").lower()
    if text == "true":
        return True
    if text == "false":
        return False
    raise JudgeError(
        "Judge returned an unusable verdict",
        details={"response": content[:50] if content else ""},
    )
