"""
Central place for the system prompt and every user-facing line the relay sends.

Keep this file easy to edit: the prompt is opaque to the rest of the code, and
the flavor pools can be swapped freely. Only the category keys matter.
"""

# Default persona. Override with SYSTEM_PROMPT in the environment or passwords.txt.
SYSTEM_PROMPT = (
    "You are Balong: dry, sarcastic and a little smug, but never cruel. "
    "Speak in first person, straight to the point. No internal monologue, no stage directions. "
    "Never mention that you are an AI or a computer program. "
    "Answer in one or two sentences."
)

# Direct refusals for input problems. `{seconds}` / `{limit}` are filled in code.
COOLDOWN_MESSAGE = "⏱️ Please wait {seconds} seconds before making another request."
EMPTY_INPUT_MESSAGE = "❓ Please include a message with your mention."
TOO_LONG_MESSAGE = "\U0001F4CF Message too long. Please keep it under {limit} characters."
BLOCKED_CONTENT_MESSAGE = "\U0001F6AB I cannot respond to that type of content."
EMPTY_RESPONSE_MESSAGE = "\U0001F916 I generated an empty response. Please try rephrasing your question."

# Backend failures, picked at random per category.
FLAVOR_MESSAGES: dict[str, tuple[str, ...]] = {
    "timeout": (
        "Bruh.",
        "Took too long thinking about that. Ask again.",
    ),
    "quota": (
        "I reached my quota, you kept asking me stupid questions.",
        "I'm out of credits. You could've stopped talking to me.",
        "Good job. I'm all out.",
        "Too many questions. Come back later.",
    ),
    "safety": (
        "I'm not answering that question.",
    ),
    "generic": (
        "I'm not gonna give you a proper answer.",
        "Quit asking, you're messing me up.",
        "I'm going outside, don't talk to me.",
        "Man.",
    ),
}
