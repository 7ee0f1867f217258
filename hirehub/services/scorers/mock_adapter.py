# hirehub/services/scorers/mock_adapter.py
"""
Deterministic mock scorer for development and CI.
Output depends only on (model, prompt), so repeated runs grade identically.
"""

import asyncio
import hashlib
import json


class MockScorer:
    name = "mock"

    async def score(self, prompt: str, model: str) -> str:
        await asyncio.sleep(0)  # keep async signature
        h = hashlib.sha256(f"{model}:{prompt}".encode()).digest()
        base = 55 + h[0] % 36  # 55..90
        scores = {
            "overall": base,
            "ats": min(100, base + h[1] % 10),
            "keyword": max(0, base - h[2] % 15),
            "format": min(100, 60 + h[3] % 35),
            "experience": max(0, base - 5 + h[4] % 10),
        }
        body = {
            "scores": scores,
            "reviewText": (
                "The resume presents relevant experience for the target role with a clear structure. "
                "Keyword coverage against the job description is partial; several required skills are "
                "implied rather than stated, and quantified outcomes are sparse in recent roles."
            ),
            "suggestions": [
                {
                    "id": "s_001",
                    "title": "Mirror the job description keywords",
                    "description": "List the required tools from the posting explicitly in the skills section.",
                    "example": "Skills: Python, FastAPI, PostgreSQL, Docker",
                    "category": "keywords",
                    "priority": 1,
                },
                {
                    "id": "s_002",
                    "title": "Quantify achievements",
                    "description": "Add measurable results to the two most recent roles.",
                    "category": "experience",
                    "priority": 2,
                },
            ],
        }
        return "```json\n" + json.dumps(body) + "\n```"


def build(settings=None, **kwargs) -> MockScorer:
    return MockScorer()
