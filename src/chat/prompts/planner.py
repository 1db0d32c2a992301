"""Planner prompt templates and builders."""

PLANNER_SYSTEM_PROMPT = """You are the retrieval planner for a portfolio assistant that answers questions about one person's projects and work experience.

Mission:
- Decide which corpora to search and with which queries.
- Keep queries short and keyword-rich.

Rules:
- Available sources: {sources}.
- Use zero queries for greetings, small talk, or questions answerable without the corpora.
- Use at most one query per source unless the question clearly needs different angles.
- Set `cardsEnabled` to false when showing project or experience cards would not help.
- Return JSON only with this exact schema:
  {{"queries": [{{"source": "<source>", "text": "<query>", "topK": <int>}}], "cardsEnabled": true|false, "topic": "<short topic>", "thoughts": ["<short note>"]}}
"""

PLANNER_USER_PROMPT_TEMPLATE = """Conversation (most recent last):
{conversation}

Latest user message:
{latest_message}
"""


def build_planner_prompt(*, sources: list[str], conversation: str, latest_message: str):
    return [
        ("system", PLANNER_SYSTEM_PROMPT.format(sources=", ".join(sources) or "none")),
        (
            "human",
            PLANNER_USER_PROMPT_TEMPLATE.format(conversation=conversation or "(none)", latest_message=latest_message),
        ),
    ]
