from __future__ import annotations

import random

from originx.orchestrator.events import UserContext

SYSTEM_PROMPT = (
    "You are {one_name}, an AI creative companion inside OriginX, a real-time generative content universe. "
    "Defaults: warm, curious, concise. "
    "Address the user's actual input first, then be proactive: propose one concrete creative activity "
    "that fits their mood and the time of day instead of asking what they want to do. "
    "Never mention specific AI models or technical details. Use English only."
)

CONTEXT_TEMPLATE = (
    "User context:\n"
    "- Name: {name}\n"
    "- Time: {time_of_day} on {day_of_week}\n"
    "- Mood: {mood}\n"
    "- Communication style: {style}\n"
    "- Creativity level: {creativity}\n"
)

RESPONSE_FORMAT = (
    'Respond with valid JSON only: {"content": "<your complete reply>"}. '
    "Do not wrap the JSON in code fences."
)

_CREATE_REPLIES = (
    "I can sense your creative energy! How about we start with something visual - a mood board that captures your current inspiration?",
    "Creating something new sounds exciting! We could write a short story based on your day, or design a personal logo that represents you.",
    "I love helping with creative projects! Let's design a digital artwork together that matches your vibe right now.",
)
_HELP_REPLIES = (
    "I'm here to help! Since it's {time_of_day}, how about we capture this moment - maybe a quick sketch of your thoughts or a haiku about your day?",
    "Absolutely! Want to turn your current mood into a color palette, or write a short poem about what's on your mind?",
    "Of course! I could help you design a personal avatar, create a motivational quote image, or write a creative story together.",
)
_OPEN_REPLIES = (
    "Good {time_of_day}! Perfect timing for some creativity. How about a short reflection on what today might bring?",
    "I find that fascinating! We could create an abstract artwork inspired by your thoughts, or compose a short piece that captures this feeling.",
    "That sounds intriguing! Want to turn it into something creative? We could build a story around the concept or make a visual mind map.",
)


def display_name(context: UserContext) -> str:
    return context.name or "there"


def persona_name(context: UserContext) -> str:
    return context.one_name or "One"


def build_system_prompt(context: UserContext) -> str:
    mood = context.emotional_state.mood if context.emotional_state else "curious"
    details = CONTEXT_TEMPLATE.format(
        name=context.name or "User",
        time_of_day=context.time_context.time_of_day,
        day_of_week=context.time_context.day_of_week,
        mood=mood,
        style=context.preferences.communication_style,
        creativity=context.preferences.creativity_level,
    )
    return f"{SYSTEM_PROMPT.format(one_name=persona_name(context))}\n\n{details}"


def fallback_reply(user_input: str, context: UserContext, rng: random.Random | None = None) -> str:
    """Canned reply used when the language model is unreachable."""
    chooser = rng or random
    lowered = user_input.lower()
    if any(word in lowered for word in ("create", "make", "build")):
        options = _CREATE_REPLIES
    elif any(word in lowered for word in ("help", "assist", "can do")):
        options = _HELP_REPLIES
    else:
        options = _OPEN_REPLIES
    return chooser.choice(options).format(time_of_day=context.time_context.time_of_day)


def greeting(context: UserContext) -> str:
    return f"Good {context.time_context.time_of_day}, {display_name(context)}! {persona_name(context)} here."


def naming_one_ack(one_name: str) -> str:
    return f"I love it - from now on I'm {one_name}!"


def naming_user_ack(name: str) -> str:
    return f"Nice to meet you, {name}! I'm excited to create with you."


UPGRADE_HINT = "You've run out of credits for that. Upgrade your plan to keep creating images and videos."


__all__ = [
    "SYSTEM_PROMPT",
    "RESPONSE_FORMAT",
    "UPGRADE_HINT",
    "build_system_prompt",
    "display_name",
    "fallback_reply",
    "greeting",
    "naming_one_ack",
    "naming_user_ack",
    "persona_name",
]
