"""Localized phrase pools used by the flow engines and the style formatter."""

from .models import ChatOption, ControlAction, Role

GREETINGS = ["Good day", "Wah gwaan", "How yuh going", "Hello there"]

ACKNOWLEDGMENTS = ["Thanks plenty", "Much appreciated", "Real nice", "Thank yuh"]

EXPRESSIONS = ["Alright,", "Yes,", "Well,", "Okay then,"]

CLOSINGS = ["Alright?", "Eh?", "For so!", "You see?", "You get me?"]

EMOJIS = ["😊", "👋", "✨", "🌺", "🙌", "👍", "🌴", "☀️"]

REPHRASE_PREFIXES = [
    "Just to be clear, ",
    "To clarify, ",
    "In other words, ",
    "Let me say it again, ",
    "What I meant was, ",
    "To put it another way, ",
]

QUESTION_INTROS = [
    "",
    "Next up: ",
    "Now, ",
    "Tell me, ",
    "Okay, ",
]

SECTION_OPENERS = [
    "Now let's move on to",
    "Next, let's talk about",
    "Alright, time for",
    "Let's continue with",
]

INTRO_MESSAGES = [
    "Welcome to Tavara! Are you here to find care for someone, or are you a caregiver looking for opportunities?",
    "Hi there, happy to have you here. Can you tell me if you're looking for care, or looking to provide it?",
    "Good day and welcome! Are you hoping to connect with a caregiver, or interested in joining our team?",
    "Hello and welcome to Tavara. Just to get started, are you here as someone seeking care or as a professional caregiver?",
    "Warm welcome! Can I help you find trusted care for a loved one, or are you looking to offer your caregiving services?",
    "Nice to meet you! Are you looking for support at home or hoping to offer support as a caregiver?",
    "Welcome! Are you hoping to match with a caregiver, or are you looking for work as one?",
    "Good day! Would you like help finding a caregiver, or are you here to explore caregiving jobs?",
    "Hello and thanks for visiting Tavara. Are you here to request care or offer it?",
    "Thanks for stopping by! Are you looking for care for a loved one, or are you a caregiver seeking new opportunities?",
]

ROLE_FOLLOWUPS = {
    Role.FAMILY: (
        "I understand you're looking for care for a loved one. Let's collect some "
        "information to help match you with the right professional."
    ),
    Role.PROFESSIONAL: (
        "Welcome, professional caregiver! I'll ask you a few questions to understand "
        "your expertise and help connect you with families who need your skills."
    ),
    Role.COMMUNITY: (
        "Thank you for your interest in helping! I'll ask a few questions to understand "
        "how you'd like to contribute to our caregiving community."
    ),
}

ROLE_INTENTS = {
    Role.FAMILY: "Help them find caregiving support for their loved ones.",
    Role.PROFESSIONAL: "Help them register as a caregiver on our platform.",
    Role.COMMUNITY: "Help them find ways to contribute to our caregiving community.",
}

VALIDATION_RESPONSES = {
    "email": [
        "That email doesn't look quite right. Could you check it again?",
        "Hmm, I need a proper email address, like name@example.com.",
    ],
    "phone": [
        "That phone number doesn't look right. Try something like +1 868 123 4567.",
        "Could you check that number again? I need a valid phone number.",
    ],
    "name": [
        "Could you type your name using just letters?",
        "That name doesn't look quite right. Try again for me?",
    ],
    "budget": [
        "Could you give me a budget like $20-30/hour, or just say Negotiable?",
        "I didn't catch that budget. Something like $25/hour works, or Negotiable.",
    ],
}

ROLE_OPTIONS = [
    ChatOption(
        id=Role.FAMILY.value,
        label="👪 I'm looking for care for a loved one",
        subtext="We'll ask about their care needs, schedule, and your preferences.",
    ),
    ChatOption(
        id=Role.PROFESSIONAL.value,
        label="👩‍⚕️ I'm a professional caregiver",
        subtext="You'll share your experience, availability, and care specialties.",
    ),
    ChatOption(
        id=Role.COMMUNITY.value,
        label="🤝 I want to help or get involved",
        subtext="Whether you're a volunteer or innovator, we'd love to collaborate.",
    ),
]

AI_ROLE_OPTIONS = [
    ChatOption(id=Role.FAMILY.value, label="I need care for someone"),
    ChatOption(id=Role.PROFESSIONAL.value, label="I provide care services"),
    ChatOption(id=Role.COMMUNITY.value, label="I want to support the community"),
]

COMPLETION_OPTIONS = [
    ChatOption(id=ControlAction.PROCEED_TO_REGISTRATION.value, label="Complete my registration"),
    ChatOption(
        id=ControlAction.TALK_TO_REPRESENTATIVE.value,
        label="I'd like to talk to a representative first",
    ),
]

RESUME_OPTIONS = [
    ChatOption(id=ControlAction.RESUME.value, label="Yes, continue"),
    ChatOption(id=ControlAction.RESTART.value, label="No, start over"),
]

CONTINUE_OPTION = ChatOption(id=ControlAction.CONTINUE.value, label="Continue")

DONE_SELECTING_OPTION = ChatOption(id=ControlAction.DONE_SELECTING.value, label="✓ Done selecting")

START_OVER_OPTION = ChatOption(id=ControlAction.RESTART.value, label="Start over")

CONFIRM_OPTIONS = [
    ChatOption(id="yes", label="Yes"),
    ChatOption(id="no", label="No"),
]

REPRESENTATIVE_MESSAGES = {
    Role.FAMILY: "Hello, I'm looking for care for a loved one and would like to speak with someone at Tavara.",
    Role.PROFESSIONAL: "Hello, I'm a caregiver interested in joining Tavara and would like to speak with someone.",
    Role.COMMUNITY: "Hello, I'd like to get involved with the Tavara community and would like to speak with someone.",
}

DEFAULT_REPRESENTATIVE_MESSAGE = "Hello, I need help with Tavara services."
