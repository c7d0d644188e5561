"""
Calibrated keyword tables for the Tier-1 classifier.

Each category has three tiers worth 3/2/1 points per distinct keyword found
in the lower-cased scan text. Keywords are matched as plain substrings.
"""

import re

from mailcron.models import Category

HIGH_POINTS = 3
MEDIUM_POINTS = 2
LOW_POINTS = 1

KEYWORD_SCORES = {
    Category.PLACEMENT_DRIVE: {
        "high": [
            "placement drive",
            "campus placement",
            "placement season",
            "placement opportunity",
            "campus recruitment",
            "recruitment drive",
            "pool campus",
            "off campus placement",
        ],
        "medium": ["placement", "campus hiring", "fresher hiring", "batch hiring", "graduate hiring"],
        "low": ["career opportunity", "job opportunity", "hiring"],
    },
    Category.INTERVIEW: {
        "high": [
            "interview schedule",
            "interview invitation",
            "technical interview",
            "hr interview",
            "interview round",
            "interview slot",
            "interview call",
            "interview date",
            "join the interview",
            "interview link",
            "zoom interview",
            "teams interview",
        ],
        "medium": ["interview", "interviewing", "face to face", "video call", "screening call"],
        "low": ["discussion", "meeting scheduled"],
    },
    Category.ASSESSMENT: {
        "high": [
            "online assessment",
            "coding test",
            "aptitude test",
            "technical test",
            "online test",
            "assessment link",
            "test invitation",
            "hackerrank",
            "hackerearth",
            "codility",
            "mettl",
            "amcat",
            "cocubes",
            "assessment invitation",
        ],
        "medium": ["assessment", "test scheduled", "exam link", "proctored test", "coding challenge"],
        "low": ["test", "quiz", "evaluation"],
    },
    Category.SHORTLISTED: {
        "high": [
            "you have been shortlisted",
            "shortlisted for",
            "congratulations you are shortlisted",
            "selected for next round",
            "cleared the round",
            "qualified for",
            "you are selected",
            "offer letter",
            "job offer",
            "we are pleased to offer",
        ],
        "medium": ["shortlisted", "selected", "congratulations", "next round", "moved forward"],
        "low": ["next steps", "proceeding", "qualifying"],
    },
}

TIER_POINTS = (("high", HIGH_POINTS), ("medium", MEDIUM_POINTS), ("low", LOW_POINTS))

# Marketing language; each match costs every category NEGATIVE_PENALTY points
NEGATIVE_KEYWORDS = [
    "unsubscribe",
    "newsletter",
    "marketing",
    "promotional",
    "sale",
    "discount",
    "webinar registration",
    "course enrollment",
    "learn more",
    "free trial",
]
NEGATIVE_PENALTY = 2

# Recruiting role addresses and job-board domains
TRUSTED_SENDER_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"hr@",
        r"careers@",
        r"recruitment@",
        r"talent@",
        r"hiring@",
        r"noreply.*placement",
        r"campus.*team",
        r"@naukri\.com",
        r"@linkedin\.com",
        r"@monster\.com",
        r"@indeed\.com",
        r"@internshala\.com",
        r"@hackerrank\.com",
        r"@hackerearth\.com",
        r"@codility\.com",
        r"@mettl\.com",
    )
]
SENDER_BONUS = 3
