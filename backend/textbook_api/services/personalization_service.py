"""
Textbook API — Chapter Personalization
=======================================

What:  Deterministic, profile-driven text substitutions on chapter content.
Why:   Gives readers a tailored version of a chapter without a model call.
How:   Pure function of (content, profile). No I/O, no state.

Rules:
    software background mentions "beginner" → annotate concept/method/approach
        with "(explained for beginners)"
    software background mentions "advanced" → annotate example/concept
        with "(advanced details)"
    learning goal mentions AI or ML        → append an AI/ML tailoring note
    learning goal mentions robotics        → append a robotics tailoring note
    no profile                             → content returned unchanged
"""

import re
from typing import Optional

from textbook_api.schemas.profile import ProfileResponse

BEGINNER_TERMS = re.compile(r"\b(concept|method|approach)\b", re.IGNORECASE)
ADVANCED_TERMS = re.compile(r"\b(example|concept)\b", re.IGNORECASE)

# Word boundaries: "maintain" or "html" must not count as AI/ML interest
AI_ML_GOAL = re.compile(r"\b(ai|ml)\b", re.IGNORECASE)
ROBOTICS_GOAL = re.compile(r"robotics", re.IGNORECASE)

AI_ML_NOTE = "\n\n*Tailored for AI/ML learners*"
ROBOTICS_NOTE = "\n\n*Tailored for robotics enthusiasts*"


def personalize_content(content: str, profile: Optional[ProfileResponse]) -> str:
    if profile is None:
        return content

    personalized = content

    background = (profile.software_background or "").lower()
    if "beginner" in background:
        personalized = BEGINNER_TERMS.sub(r"\1 (explained for beginners)", personalized)
    elif "advanced" in background:
        personalized = ADVANCED_TERMS.sub(r"\1 (advanced details)", personalized)

    goal = profile.learning_goal or ""
    if AI_ML_GOAL.search(goal):
        personalized += AI_ML_NOTE
    elif ROBOTICS_GOAL.search(goal):
        personalized += ROBOTICS_NOTE

    return personalized
