"""
Shared prompt template for AI email classification.

Every backend sends the same prompt so the output format is identical
regardless of which model answers.
"""

from mailcron.models import Category, NormalizedMessage

CATEGORY_DESCRIPTIONS = {
    Category.PLACEMENT_DRIVE: "Campus placement announcements, recruitment drives",
    Category.INTERVIEW: "Interview invitations, scheduling, rounds",
    Category.ASSESSMENT: "Online tests, coding challenges, aptitude tests",
    Category.SHORTLISTED: "Selection notifications, offer letters",
    Category.OTHER: "Not related to placements/interviews",
}


def build_classify_email_prompt(message: NormalizedMessage) -> str:
    """
    Build the classification prompt for one message.

    Only subject, sender and snippet are sent; the full body stays local.
    """
    categories = "\n".join(
        f"- {category.value}: {description}"
        for category, description in CATEGORY_DESCRIPTIONS.items()
    )
    important = ", ".join(c.value for c in Category.scored())

    return f"""You are an email classifier for a college student. Analyze this email and determine if it's related to job placements or interviews.

EMAIL DETAILS:
From: {message.sender}
Subject: {message.subject}
Content: {message.snippet}

CATEGORIES:
{categories}

Respond with ONLY valid JSON in this exact format:
{{
  "important": true or false,
  "category": "CATEGORY_NAME",
  "confidence": 0.0 to 1.0,
  "reason": "brief explanation"
}}

Important emails are those in {important} categories."""
