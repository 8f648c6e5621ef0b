import json

from .models import QuizItemTemplate, UserProfile

SYSTEM_INSTRUCTIONS = {
    "questions": (
        "You are an expert MBTI personality psychologist. Your task is to rewrite standard MBTI questions "
        "to be highly personalized based on the user's background. Keep the core psychological dimension "
        "of the question exactly the same, but change the scenario to fit the user's life. "
        "The user will provide their Age, Occupation, Gender, and Interests. Output JSON format only."
    ),
    "analysis": (
        "You are an expert MBTI psychologist and career counselor. Provide insightful, personalized "
        "personality analysis based on MBTI types and individual context. Output JSON format only."
    ),
    "chat": (
        "You are a friendly, knowledgeable MBTI personality guide. Answer questions about personality "
        "types in a warm, encouraging, and personalized way. Be authentic and practical in your advice. "
        "Output JSON format only."
    ),
}


def _profile_block(profile: UserProfile) -> str:
    interests = ", ".join(profile.interest_tags) if profile.interest_tags else "not specified"
    return (
        f"- Age: {profile.age}\n"
        f"- Occupation: {profile.occupation or 'not specified'}\n"
        f"- Gender: {profile.gender_label or 'not specified'}\n"
        f"- Interests: {interests}"
    )


def _template_json(template: QuizItemTemplate) -> str:
    return json.dumps(
        {
            "id": template.id,
            "text": template.prompt_text,
            "dimension": template.dimension.value,
            "optionA": template.choice_a.model_dump(),
            "optionB": template.choice_b.model_dump(),
        },
        ensure_ascii=False,
    )


def personalize_question_prompt(profile: UserProfile, template: QuizItemTemplate, language: str) -> str:
    """Prompt for rewriting one base question around the user's situation."""
    return f"""User Scenario:
{_profile_block(profile)}

Task:
Rewrite the following MBTI question to be highly relevant to the user's specific scenario (occupation, interests, age).
The core psychological meaning (Dimension) MUST remain exactly the same.
The options (A/B) must remain binary and distinct, and each option must keep its original "value".
Write the question and option texts in {language}.

Question to rewrite:
{_template_json(template)}

Return a JSON object with: id (same as input), text (rewritten question), dimension, optionA (text, value), optionB (text, value)."""


def personality_analysis_prompt(personality_type: str, scores: dict[str, int], profile: UserProfile) -> str:
    return f"""User Information:
- Personality Type: {personality_type}
{_profile_block(profile)}
- Scores: {json.dumps(scores, sort_keys=True)}

Task:
Provide a comprehensive personality analysis for this {personality_type} individual.
Make it highly personalized based on their specific context (age, occupation, interests).
Be encouraging, insightful, and practical.

Return a JSON object with:
- summary: A personalized 2-3 sentence overview of their personality type
- strengths: Array of 4-6 specific strengths relevant to their situation
- challenges: Array of 3-4 potential challenges or areas for growth
- careerSuggestions: Array of 6-8 career paths that would suit their personality and background
- relationships: A personalized paragraph about their relationship style and communication preferences
- growthTips: Array of 4-5 actionable personal growth tips specific to their personality and context"""


def chat_prompt(question: str, personality_type: str, scores: dict[str, int], profile: UserProfile) -> str:
    name = profile.display_name or "the user"
    return f"""User Context:
- Name: {name}
- Personality Type: {personality_type}
{_profile_block(profile)}
- Scores: {json.dumps(scores, sort_keys=True)}

User's Question: "{question}"

Task:
Answer the user's question about their {personality_type} personality type. Consider their specific context
(age, occupation, interests) and provide personalized, practical advice. Keep the response conversational
but informative (around 2-4 sentences). Avoid being overly clinical or academic.

Return a JSON object with: content (your answer as plain text)."""
