"""Local phrasing applied to outgoing bot messages."""

import re

from . import phrasings
from .context import SessionContext
from .models import FieldType

EMOJI_REGEX = re.compile("[\U0001F300-\U0001F6FF☀-➿]")

# Corporate filler that makes replies sound generated.
ARTIFICIAL_PHRASES = [
    (re.compile(r"how would you like to engage with us today", re.IGNORECASE), "how can I help you today"),
    (re.compile(r"engage with (our|the) platform", re.IGNORECASE), "use Tavara"),
    (re.compile(r"engage with (our|the) service", re.IGNORECASE), "use our service"),
    (re.compile(r"provide us with", re.IGNORECASE), "give me"),
    (re.compile(r"we would like to know", re.IGNORECASE), "I'd like to know"),
    (re.compile(r"please provide", re.IGNORECASE), "please share"),
    (re.compile(r"please select", re.IGNORECASE), "please choose"),
    (re.compile(r"please enter", re.IGNORECASE), "please type"),
    (re.compile(r"^(as an ai( language model)?|certainly!?|absolutely!?)[,.]?\s*", re.IGNORECASE), ""),
]


def _keep_case(replacement: str):
    """Substitution that capitalizes ``replacement`` when the matched text was capitalized."""
    def substitute(match: re.Match) -> str:
        if match.group(0)[0].isupper():
            return replacement[0].upper() + replacement[1:]
        return replacement
    return substitute


CONTRACTIONS = [
    (re.compile(r"\bit is\b", re.IGNORECASE), _keep_case("it's")),
    (re.compile(r"\byou are\b", re.IGNORECASE), _keep_case("you're")),
    (re.compile(r"\bdo not\b", re.IGNORECASE), _keep_case("don't")),
    (re.compile(r"\bcannot\b", re.IGNORECASE), _keep_case("can't")),
    (re.compile(r"\bi am\b", re.IGNORECASE), _keep_case("I'm")),
    (re.compile(r"\bwill not\b", re.IGNORECASE), _keep_case("won't")),
    (re.compile(r"\bwhat is\b", re.IGNORECASE), _keep_case("what's")),
    (re.compile(r"\bthat is\b", re.IGNORECASE), _keep_case("that's")),
]

KEEP_CAPITALIZED = {"I", "Tavara", "Trinidad", "Tobago", "WhatsApp"}
FIRST_WORD_REGEX = re.compile(r"[A-Za-z]+")

GREETING_REGEX = re.compile(r"\b(hello|hi|hey)\b", re.IGNORECASE)
THANKS_REGEX = re.compile(r"\b(thank you|thanks)\b", re.IGNORECASE)


def lower_first(text: str) -> str:
    """Lowercase the first letter unless the first word is "I", an acronym or a proper noun."""
    if not text:
        return text
    match = FIRST_WORD_REGEX.match(text)
    if match and (match.group(0) in KEEP_CAPITALIZED or (len(match.group(0)) > 1 and match.group(0).isupper())):
        return text
    return f"{text[0].lower()}{text[1:]}"


def strip_artificial_phrases(message: str) -> str:
    for pattern, replacement in ARTIFICIAL_PHRASES:
        message = pattern.sub(replacement, message)
    return message.strip()


class StyleFormatter:
    """Randomized local phrasing; phrase picks never repeat back to back within a session."""

    def __init__(
        self,
        greeting_rate: float = 0.15,
        acknowledgment_rate: float = 0.2,
        expression_rate: float = 0.15,
        closing_rate: float = 0.1,
        emoji_rate: float = 0.1,
        contractions: bool = True,
    ):
        self.greeting_rate = greeting_rate
        self.acknowledgment_rate = acknowledgment_rate
        self.expression_rate = expression_rate
        self.closing_rate = closing_rate
        self.emoji_rate = emoji_rate
        self.contractions = contractions

    def apply(self, message: str, context: SessionContext) -> str:
        if not message:
            return message

        rng = context.rng
        styled = message

        if GREETING_REGEX.search(styled) and rng.random() < self.greeting_rate:
            greeting = context.pick("greetings", phrasings.GREETINGS)
            styled = GREETING_REGEX.sub(greeting, styled, count=1)

        if THANKS_REGEX.search(styled) and rng.random() < self.acknowledgment_rate:
            acknowledgment = context.pick("acknowledgments", phrasings.ACKNOWLEDGMENTS)
            styled = THANKS_REGEX.sub(acknowledgment, styled, count=1)

        if rng.random() < self.expression_rate:
            expression = context.pick("expressions", phrasings.EXPRESSIONS)
            if expression not in styled:
                styled = f"{expression} {lower_first(styled)}"

        if (
            rng.random() < self.closing_rate
            and styled[-1] in ".!?"
            and not any(closing in styled for closing in phrasings.CLOSINGS)
        ):
            closing = context.pick("closings", phrasings.CLOSINGS)
            styled = f"{styled[:-1]} {closing}"

        if self.contractions:
            for pattern, replacement in CONTRACTIONS:
                styled = pattern.sub(replacement, styled)

        if not EMOJI_REGEX.search(styled) and rng.random() < self.emoji_rate:
            emoji = context.pick("emojis", phrasings.EMOJIS)
            if styled[-1] in ".!?":
                styled = f"{styled[:-1]} {emoji}{styled[-1]}"
            else:
                styled = f"{styled} {emoji}"

        return styled

    def rephrase(self, message: str, context: SessionContext) -> str:
        """Reword a message that would otherwise repeat the previous one verbatim."""
        prefix = context.pick("rephrase", phrasings.REPHRASE_PREFIXES)
        if not message:
            return prefix.rstrip(", ")
        return f"{prefix}{lower_first(message)}"

    def validation_error(self, field_type: FieldType | None, context: SessionContext) -> str:
        responses = phrasings.VALIDATION_RESPONSES.get(field_type.value if field_type else "")
        if not responses:
            return "That doesn't seem right. Could you check it and try again?"
        message = context.pick(f"validation_{field_type.value}", responses)
        if context.rng.random() < self.expression_rate:
            expression = context.pick("expressions", phrasings.EXPRESSIONS)
            message = f"{expression} {lower_first(message)}"
        return message


class PlainFormatter(StyleFormatter):
    """Formatter that never alters text."""

    def __init__(self):
        super().__init__(0.0, 0.0, 0.0, 0.0, 0.0, contractions=False)
