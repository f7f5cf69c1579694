"""Prompt text for the student re-ranking model."""
from __future__ import annotations

from collections.abc import Sequence

from leadmatch.schemas import CandidateMatch

RERANK_SYSTEM_PROMPT = (
    "You return strict JSON only. Follow the user instructions precisely. "
    "Never output markdown."
)

RERANK_PROMPT = """You are an AI assistant matching student profiles.

New student profile:
{profile}

Candidate students (use only these IDs):
{candidates}

Task:
- Select up to {limit} strong matches.
- If at least {limit} strong matches exist, you must return exactly {limit}.
- Only use IDs from the provided list. Do not invent or alter IDs.
- Prioritize (in order): same/related degree or program; similar GPA; overlap in subject interests or target universities.
- Be pragmatic: if several are reasonably strong, include them, do not be overly strict.
- If fewer than {limit} strong matches exist, return all strong matches (possibly zero).
- For each match, provide a concise reason in Traditional Chinese and English, combined into ONE string and separated by " | ".
    Format exactly: "繁中: <reason in Traditional Chinese> | EN: <reason in English>".
    Keep each language concise (e.g., EN ≤ 12 words; 繁中 ≤ 30 characters).
- Output strict JSON only. No markdown, no comments.

Output JSON schema:
{{
  "topMatches": [
    {{ "mongoId": "<one of the provided IDs>", "reason": "繁中: <短理由> | EN: <short reason>" }}
  ]
}}

Example (format guidance only):
{{
  "topMatches": [
    {{ "mongoId": "id_1", "reason": "繁中: 同系所與相近GPA，目標學校重疊 | EN: Same CS program, similar GPA, shared target schools" }},
    {{ "mongoId": "id_2", "reason": "繁中: 機械領域相近，GPA接近 | EN: Mechanical Eng, close GPA, robotics focus" }},
    {{ "mongoId": "id_3", "reason": "繁中: 數據科學碩士，目標相符 | EN: Data Science master, similar coursework and goals" }}
  ]
}}
"""


def format_candidate_line(candidate: CandidateMatch) -> str:
    return f"ID: {candidate.student_id} | distance: {candidate.distance:.4f} | {candidate.text}"


def build_rerank_prompt(profile: str, candidates: Sequence[CandidateMatch], limit: int) -> str:
    """Render the re-ranking instructions for one lead."""
    return RERANK_PROMPT.format(
        profile=profile,
        candidates="\n".join(format_candidate_line(c) for c in candidates),
        limit=limit,
    )
