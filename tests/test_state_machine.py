"""Tests for the chat state machine: navigation, option handlers, resume and free text."""

from urllib.parse import unquote

from care_chat import phrasings
from care_chat.context import RetryState
from care_chat.contact import ContactChannel
from care_chat.models import (
    ChatConfig,
    ChatMode,
    ChatTurn,
    ConversationStage,
    EventType,
    FieldType,
    Role,
)
from care_chat.repository.base import RepositoryError
from care_chat.state_machine import (
    COMPLETION_TEXT_REPLY,
    EMPTY_SELECTION_PROMPT,
    FAREWELL_MESSAGE,
    MULTI_SELECT_PROMPT,
    MULTI_SELECT_TEXT_PROMPT,
    REDIRECT_MESSAGE,
    WELCOME_BACK_PROMPT,
)

from tests.conftest import SESSION_ID, InMemoryResponseRepository, InMemorySessionStore

RECIPIENT_KEY = "section_0_question_0"
CARE_TYPES_KEY = "section_0_question_1"


def bot_messages(turn):
    return [message for message in turn.messages if not message.is_user]


def option_ids(message):
    return [option.id for option in message.options or []]


def events(turn, event_type):
    return [event for event in turn.events if event.type == event_type]


def move_to(machine, section_index, question_index, role=Role.FAMILY):
    session = machine.session
    session.role = role
    session.section_index = section_index
    session.question_index = question_index
    session.stage = ConversationStage.QUESTIONS


class TestInitialize:
    async def test_fresh_session_gets_intro_with_role_options(self, make_machine, session_store):
        machine = make_machine()
        turn = await machine.initialize_chat()

        [message] = turn.messages
        assert message.content in phrasings.INTRO_MESSAGES
        assert option_ids(message) == ["family", "professional", "community"]
        assert len(session_store.data[f"messages:{SESSION_ID}"]) == 1

    async def test_initial_role_skips_intro(self, make_machine):
        machine = make_machine()
        turn = await machine.initialize_chat(Role.PROFESSIONAL)

        [message] = turn.messages
        assert not message.is_user
        assert "professional background.\n\n" in message.content
        assert option_ids(message)[0] == "nurse"
        assert machine.session.stage == ConversationStage.QUESTIONS

    async def test_stored_progress_offers_resume(self, make_machine, session_store):
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "questionIndex": 12}
        machine = make_machine()
        turn = await machine.initialize_chat()

        [message] = turn.messages
        assert message.content == WELCOME_BACK_PROMPT
        assert option_ids(message) == ["resume", "restart"]
        assert machine.session.is_resuming

    async def test_stored_transcript_is_restored(self, make_machine, session_store):
        first = make_machine()
        await first.initialize_chat()
        stored = session_store.data[f"messages:{SESSION_ID}"]

        second = make_machine()
        turn = await second.initialize_chat()

        assert turn.messages == []
        assert second.session.transcript.to_list() == stored

    async def test_reconnect_mid_questionnaire_keeps_transcript_and_position(self, make_machine, session_store):
        first = make_machine()
        await first.initialize_chat()
        await first.handle_option_selection("family")
        await first.handle_option_selection("parent")
        stored = list(session_store.data[f"messages:{SESSION_ID}"])
        assert len(stored) == 5

        second = make_machine()
        turn = await second.initialize_chat()

        assert turn.messages == []
        assert session_store.data[f"messages:{SESSION_ID}"] == stored
        assert len(second.session.transcript) == 5
        session = second.session
        assert session.role == Role.FAMILY
        assert (session.section_index, session.question_index) == (0, 1)
        assert session.multi_selection.ready
        assert events(turn, EventType.FIELD_TYPE)

        turn = await second.handle_option_selection("medical")
        assert bot_messages(turn)[0].content == MULTI_SELECT_PROMPT
        assert len(session_store.data[f"messages:{SESSION_ID}"]) == 7


class TestRoleSelection:
    async def test_role_pick_starts_first_question(self, make_machine, session_store):
        machine = make_machine()
        await machine.initialize_chat()
        turn = await machine.handle_role_selection("family")

        user, question = turn.messages
        assert user.is_user
        assert user.content == phrasings.ROLE_OPTIONS[0].label
        assert question.content.startswith("Let's get started.\n\n")
        assert "care recipient." in question.content
        assert option_ids(question) == ["parent", "spouse", "child", "other"]
        assert machine.session.role == Role.FAMILY
        assert machine.session.stage == ConversationStage.QUESTIONS
        assert session_store.data[f"progress:{SESSION_ID}"]["role"] == "family"
        assert events(turn, EventType.FIELD_TYPE)

    async def test_unknown_role_id_clarifies(self, make_machine):
        machine = make_machine()
        await machine.initialize_chat()
        turn = await machine.handle_role_selection("astronaut")

        assert machine.session.role is None
        assert option_ids(bot_messages(turn)[0]) == ["family", "professional", "community"]


class TestStandardOption:
    async def test_single_select_answer_advances(self, family_machine, response_repo):
        turn = await family_machine.handle_option_selection("parent")

        session = family_machine.session
        assert session.form_data[RECIPIENT_KEY] == "parent"
        assert (session.section_index, session.question_index) == (0, 1)
        assert turn.messages[0].content == "For my parent"
        assert all(message.content != MULTI_SELECT_PROMPT for message in turn.messages)
        assert response_repo.responses[-1]["response"] == "parent"
        assert session.multi_selection.ready

    async def test_only_latest_options_render(self, family_machine):
        await family_machine.handle_option_selection("parent")
        rendered = family_machine.session.transcript.render()
        assert sum(1 for message in rendered if message.options) == 1
        assert rendered[-1].options is not None


class TestMultiSelection:
    async def test_first_pick_enters_multi_select(self, family_machine):
        await family_machine.handle_option_selection("parent")
        turn = await family_machine.handle_option_selection("medical")

        selection = family_machine.session.multi_selection
        assert selection.active
        assert selection.selections == ["medical"]
        assert bot_messages(turn)[0].content == MULTI_SELECT_PROMPT
        assert option_ids(bot_messages(turn)[0])[-1] == "done_selecting"
        assert events(turn, EventType.SELECTION)[0].data == {"selections": ["medical"]}

    async def test_toggles_are_silent_and_done_commits_in_order(self, family_machine):
        machine = family_machine
        await machine.handle_option_selection("parent")
        await machine.handle_option_selection("medical")
        transcript_length = len(machine.session.transcript)

        for option_id in ("companionship", "memory_care", "companionship"):
            turn = await machine.handle_option_selection(option_id)
            assert turn.messages == []
        assert len(machine.session.transcript) == transcript_length
        assert events(turn, EventType.SELECTION)[0].data == {"selections": ["medical", "memory_care"]}

        turn = await machine.handle_option_selection("done_selecting")

        session = machine.session
        assert session.form_data[CARE_TYPES_KEY] == ["medical", "memory_care"]
        assert not session.multi_selection.active
        assert session.multi_selection.selections == []
        assert session.question_index == 2
        assert turn.messages[0].content == "Medical care, Memory care"

    async def test_done_with_nothing_selected_does_not_advance(self, family_machine):
        machine = family_machine
        await machine.handle_option_selection("parent")
        await machine.handle_option_selection("medical")
        await machine.handle_option_selection("medical")
        form_data = dict(machine.session.form_data)

        turn = await machine.handle_option_selection("done_selecting")

        assert machine.session.question_index == 1
        assert machine.session.form_data == form_data
        assert bot_messages(turn)[0].content == EMPTY_SELECTION_PROMPT

    async def test_free_text_during_multi_select_reprompts(self, family_machine):
        machine = family_machine
        await machine.handle_option_selection("parent")
        await machine.handle_option_selection("medical")

        turn = await machine.handle_send_message("also cooking")

        assert bot_messages(turn)[0].content == MULTI_SELECT_TEXT_PROMPT
        assert CARE_TYPES_KEY not in machine.session.form_data

    async def test_picks_are_not_recorded_until_done(self, family_machine, response_repo, session_store):
        machine = family_machine
        await machine.handle_option_selection("parent")
        saved = len(response_repo.responses)

        await machine.handle_option_selection("medical")
        await machine.handle_option_selection("medical")

        assert CARE_TYPES_KEY not in machine.session.form_data
        assert CARE_TYPES_KEY not in session_store.data[f"progress:{SESSION_ID}"]["formData"]
        assert len(response_repo.responses) == saved

        await machine.handle_option_selection("companionship")
        await machine.handle_option_selection("done_selecting")

        assert machine.session.form_data[CARE_TYPES_KEY] == ["companionship"]
        assert response_repo.responses[-1]["response"] == ["companionship"]


class TestNavigation:
    async def test_end_of_section_transitions_and_waits_for_continue(self, family_machine):
        machine = family_machine
        move_to(machine, 0, 2)
        turn = await machine.handle_option_selection("daily")

        session = machine.session
        assert (session.section_index, session.question_index) == (1, 0)
        assert session.pending_transition
        [transition] = bot_messages(turn)
        assert "care recipient" in transition.content
        assert "care preferences" in transition.content
        assert option_ids(transition) == ["continue"]

        turn = await machine.handle_option_selection("continue")

        assert not session.pending_transition
        assert "care preferences.\n\n" in bot_messages(turn)[0].content
        assert "continue" not in session.form_data.values()
        assert (session.section_index, session.question_index) == (1, 0)

    async def test_section_change_clears_multi_selection(self, family_machine):
        machine = family_machine
        move_to(machine, 0, 2)
        machine.session.multi_selection.start("medical")

        await machine.advance_to_next_question(ChatTurn())

        assert machine.session.section_index == 1
        assert not machine.session.multi_selection.active
        assert machine.session.multi_selection.selections == []

    async def test_free_text_acknowledges_pending_transition(self, family_machine):
        machine = family_machine
        move_to(machine, 0, 2)
        await machine.handle_option_selection("daily")
        form_data = dict(machine.session.form_data)

        turn = await machine.handle_send_message("ok sure")

        assert not machine.session.pending_transition
        assert machine.session.form_data == form_data
        assert "care preferences.\n\n" in bot_messages(turn)[0].content

    async def test_last_question_moves_to_completion(self, family_machine, session_store):
        machine = family_machine
        move_to(machine, 2, 4)
        turn = await machine.handle_send_message("Port of Spain")

        session = machine.session
        assert session.stage == ConversationStage.COMPLETION
        assert (session.section_index, session.question_index) == (2, 4)
        assert option_ids(bot_messages(turn)[-1]) == ["proceed_to_registration", "talk_to_representative"]
        prefill = session_store.data[f"prefill:{SESSION_ID}"]
        assert prefill["location"] == "Port of Spain"
        assert prefill["responses"]["2"]["location"] == "Port of Spain"

    async def test_next_question_updates_field_type(self, family_machine):
        machine = family_machine
        move_to(machine, 2, 1)
        turn = await machine.handle_send_message("Lopez")

        [field_event] = events(turn, EventType.FIELD_TYPE)
        assert field_event.data == {"field_type": "email", "placeholder": "name@example.com"}
        assert machine.session.field_type == FieldType.EMAIL


class TestMessageInput:
    async def test_invalid_email_is_rejected_without_state_change(self, family_machine):
        machine = family_machine
        move_to(machine, 2, 2)
        transcript_length = len(machine.session.transcript)
        form_data = dict(machine.session.form_data)

        turn = await machine.handle_send_message("not-an-email")

        assert turn.validation_error == "Please enter a valid email address (example@domain.com)"
        assert turn.validation_hint
        assert turn.messages == []
        assert machine.session.question_index == 2
        assert machine.session.form_data == form_data
        assert len(machine.session.transcript) == transcript_length

    async def test_valid_answer_is_saved_and_advances(self, family_machine, response_repo):
        machine = family_machine
        move_to(machine, 2, 2)
        await machine.handle_send_message("  maria@example.com ")

        assert machine.session.form_data["section_2_question_2"] == "maria@example.com"
        assert machine.session.question_index == 3
        assert response_repo.responses[-1]["question_id"] == "section_2_question_2"

    async def test_text_without_role_goes_to_conversation(self, make_machine):
        machine = make_machine()
        await machine.initialize_chat()
        await machine.handle_send_message("hi")
        turn = await machine.handle_send_message("I need care for my dad")

        assert bot_messages(turn)[0].content.startswith("It sounds like you might be looking for caregiving")
        assert machine.session.role is None

    async def test_completion_stage_text_reoffers_completion_options(self, family_machine):
        machine = family_machine
        machine.session.stage = ConversationStage.COMPLETION
        turn = await machine.handle_send_message("what happens next?")

        [reply] = bot_messages(turn)
        assert reply.content == COMPLETION_TEXT_REPLY
        assert option_ids(reply) == ["proceed_to_registration", "talk_to_representative"]


class TestCompletion:
    async def test_proceed_to_registration_navigates_with_prefill(self, family_machine, session_store):
        machine = family_machine
        await machine.handle_option_selection("parent")
        machine.session.stage = ConversationStage.COMPLETION
        position = machine.session.position

        turn = await machine.handle_option_selection("proceed_to_registration")

        [navigate] = events(turn, EventType.NAVIGATE)
        assert navigate.data["url"] == f"https://tavara.care/registration/family?session={SESSION_ID}"
        assert bot_messages(turn)[-1].content == REDIRECT_MESSAGE
        assert session_store.data[f"transitioning_from_chat:{SESSION_ID}"] is True
        assert session_store.data[f"prefill:{SESSION_ID}"]["responses"]["0"]["care_recipient"] == "parent"
        assert f"progress:{SESSION_ID}" not in session_store.data
        assert machine.session.position == position

    async def test_prefill_failure_falls_back_to_bare_path(self, make_machine):
        class PrefillRejectingStore(InMemorySessionStore):
            async def set(self, key, value):
                if key.startswith("prefill:"):
                    raise RepositoryError("full")
                await super().set(key, value)

        store = PrefillRejectingStore()
        machine = make_machine(store=store)
        await machine.initialize_chat()
        await machine.handle_role_selection("family")
        machine.session.stage = ConversationStage.COMPLETION

        turn = await machine.handle_option_selection("proceed_to_registration")

        [navigate] = events(turn, EventType.NAVIGATE)
        assert navigate.data["url"] == "https://tavara.care/registration/family"
        assert bot_messages(turn)[-1].content == REDIRECT_MESSAGE

    async def test_talk_to_representative_opens_deep_link(self, family_machine):
        turn = await family_machine.handle_option_selection("talk_to_representative")

        [open_url] = events(turn, EventType.OPEN_URL)
        url = open_url.data["url"]
        assert url.startswith("https://wa.me/18687865357?text=")
        assert unquote(url.split("text=", 1)[1]) == phrasings.REPRESENTATIVE_MESSAGES[Role.FAMILY]
        assert not events(turn, EventType.CONTACT_FORM)

    async def test_unavailable_deep_link_opens_contact_form(self, make_machine):
        machine = make_machine(channel=ContactChannel(""))
        await machine.initialize_chat()
        await machine.handle_role_selection("family")

        turn = await machine.handle_option_selection("talk_to_representative")

        assert not events(turn, EventType.OPEN_URL)
        [form] = events(turn, EventType.CONTACT_FORM)
        assert form.data["event"] == "tavara:open-contact-form"
        assert form.data["payload"]["role"] == "family"
        assert form.data["payload"]["sessionId"] == SESSION_ID
        assert form.data["payload"]["transcript"]

    async def test_blocked_link_opens_contact_form(self, family_machine):
        turn = await family_machine.handle_link_blocked()
        assert events(turn, EventType.CONTACT_FORM)

    async def test_close_chat_says_goodbye_and_resets(self, family_machine, session_store):
        turn = await family_machine.handle_option_selection("close_chat")

        assert bot_messages(turn)[-1].content == FAREWELL_MESSAGE
        assert events(turn, EventType.RESET)
        assert family_machine.session.role is None
        assert f"progress:{SESSION_ID}" not in session_store.data

    async def test_have_more_questions_offers_completion_options(self, family_machine):
        turn = await family_machine.handle_option_selection("have_more_questions")

        assert family_machine.session.stage == ConversationStage.COMPLETION
        assert option_ids(bot_messages(turn)[0]) == ["proceed_to_registration", "talk_to_representative"]


class TestResume:
    async def test_legacy_progress_resumes_at_exact_slot(self, make_machine, session_store):
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "questionIndex": 12}
        machine = make_machine()
        await machine.initialize_chat()

        turn = await machine.handle_option_selection("resume")

        session = machine.session
        assert session.role == Role.FAMILY
        assert (session.section_index, session.question_index) == (1, 2)
        welcome, question = bot_messages(turn)
        assert welcome.content.startswith("Welcome back! We were discussing care preferences.")
        assert "budget for care" in question.content
        assert session.field_type == FieldType.BUDGET
        assert session_store.data[f"progress:{SESSION_ID}"]["sectionIndex"] == 1

    async def test_resume_never_repeats_last_message(self, make_machine, session_store):
        welcome = "Welcome back! We were discussing care preferences. Let's pick up where we left off."
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "sectionIndex": 1, "questionIndex": 2}
        session_store.data[f"last_message:{SESSION_ID}"] = welcome
        machine = make_machine()
        await machine.initialize_chat()

        turn = await machine.handle_option_selection("resume")

        [question] = bot_messages(turn)
        assert question.content != welcome
        assert "budget for care" in question.content

    async def test_position_past_section_end_moves_to_next_section(self, make_machine, session_store):
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "questionIndex": 19}
        machine = make_machine()
        await machine.initialize_chat()

        turn = await machine.handle_option_selection("resume")

        session = machine.session
        assert (session.section_index, session.question_index) == (2, 0)
        assert not session.pending_transition
        assert "first name" in bot_messages(turn)[-1].content
        assert session_store.data[f"progress:{SESSION_ID}"]["sectionIndex"] == 2

        await machine.handle_send_message("Maria")
        assert (session.section_index, session.question_index) == (2, 1)
        assert session.form_data["section_2_question_0"] == "Maria"

    async def test_position_past_last_section_resumes_at_completion(self, make_machine, session_store):
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "sectionIndex": 7, "questionIndex": 0}
        machine = make_machine()
        await machine.initialize_chat()

        turn = await machine.handle_option_selection("resume")

        session = machine.session
        assert session.stage == ConversationStage.COMPLETION
        assert (session.section_index, session.question_index) == (2, 4)
        assert option_ids(bot_messages(turn)[-1]) == ["proceed_to_registration", "talk_to_representative"]

    async def test_restart_clears_progress(self, make_machine, session_store):
        session_store.data[f"progress:{SESSION_ID}"] = {"role": "family", "questionIndex": 12}
        machine = make_machine()
        await machine.initialize_chat()

        turn = await machine.handle_option_selection("restart")

        assert events(turn, EventType.RESET)
        assert machine.session.role is None
        assert f"progress:{SESSION_ID}" not in session_store.data
        assert bot_messages(turn)[0].content in phrasings.INTRO_MESSAGES


class TestResetAndConfig:
    async def test_manual_reset_shows_a_different_intro(self, make_machine):
        machine = make_machine()
        first = (await machine.initialize_chat()).messages[0].content
        await machine.handle_role_selection("family")

        turn = await machine.reset_chat()

        assert events(turn, EventType.RESET)
        assert len(machine.session.transcript) == 1
        assert turn.messages[0].content != first
        assert machine.session.role is None

    async def test_mode_change_resets_retry_state(self, make_machine):
        machine = make_machine()
        machine.context.retry = RetryState(count=3)

        machine.update_config(ChatConfig(mode=ChatMode.SCRIPTED, temperature=0.2))
        assert machine.context.retry.count == 3

        machine.update_config(ChatConfig(mode=ChatMode.HYBRID))
        assert machine.context.retry.count == 0
        assert machine.config.mode == ChatMode.HYBRID


class TestPersistenceFailures:
    async def test_conversation_continues_when_storage_is_down(self, make_machine):
        machine = make_machine(
            repo=InMemoryResponseRepository(fail=True),
            store=InMemorySessionStore(fail=True),
        )
        await machine.initialize_chat()
        await machine.handle_role_selection("family")
        await machine.handle_option_selection("parent")

        assert machine.session.form_data[RECIPIENT_KEY] == "parent"
        assert machine.session.question_index == 1
