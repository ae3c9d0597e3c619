"""Tests for transcript rendering, progress decoding and small value types."""

import pytest

from care_chat.models import (
    ChatConfig,
    ChatMessage,
    ChatOption,
    ConversationStage,
    ControlAction,
    MultiSelection,
    Position,
    Progress,
    Role,
    Transcript,
)


def bot(content, *option_ids):
    options = tuple(ChatOption(id=o, label=o.title()) for o in option_ids) or None
    return ChatMessage(content=content, is_user=False, options=options)


class TestTranscript:
    """Only the latest option-carrying bot message keeps its options when rendered."""

    def test_render_keeps_only_latest_option_set(self):
        transcript = Transcript()
        transcript.append(bot("Pick a role", "family", "professional"))
        transcript.append(ChatMessage(content="Family", is_user=True))
        transcript.append(bot("Who needs care?", "parent", "child"))
        transcript.append(ChatMessage(content="Parent", is_user=True))
        transcript.append(bot("Thanks!"))

        rendered = transcript.render()

        with_options = [m for m in rendered if m.options]
        assert len(with_options) == 1
        assert with_options[0].content == "Who needs care?"
        assert len(rendered) == 5

    def test_render_does_not_mutate_stored_messages(self):
        transcript = Transcript()
        transcript.append(bot("First", "a"))
        transcript.append(bot("Second", "b"))

        transcript.render()

        assert transcript.messages[0].options is not None

    def test_last_bot_message_skips_user_messages(self):
        transcript = Transcript([bot("Hello"), ChatMessage(content="hi", is_user=True)])
        assert transcript.last_bot_message().content == "Hello"

    def test_from_list_restores_options(self):
        stored = [bot("Pick", "family").to_dict(), ChatMessage(content="Family", is_user=True).to_dict()]
        transcript = Transcript.from_list(stored)
        assert len(transcript) == 2
        assert transcript.messages[0].options[0].id == "family"
        assert transcript.messages[1].is_user

    def test_from_list_handles_none(self):
        assert len(Transcript.from_list(None)) == 0


class TestProgress:
    """Stored progress blobs, including the flat legacy encoding."""

    def test_legacy_flat_index_is_split_into_section_and_question(self):
        progress = Progress.from_blob({"role": "family", "questionIndex": 12})
        assert progress.role == Role.FAMILY
        assert progress.section_index == 1
        assert progress.question_index == 2

    def test_explicit_blob_is_taken_as_is(self):
        progress = Progress.from_blob({
            "role": "professional",
            "sectionIndex": 2,
            "questionIndex": 12,
            "stage": "completion",
            "formData": {"section_0_question_0": "nurse"},
        })
        assert (progress.section_index, progress.question_index) == (2, 12)
        assert progress.stage == ConversationStage.COMPLETION
        assert progress.form_data == {"section_0_question_0": "nurse"}

    def test_blob_without_usable_role_is_ignored(self):
        assert Progress.from_blob(None) is None
        assert Progress.from_blob({}) is None
        assert Progress.from_blob({"role": "astronaut", "questionIndex": 3}) is None

    def test_unknown_stage_falls_back_to_questions(self):
        progress = Progress.from_blob({"role": "family", "sectionIndex": 0, "stage": "weird"})
        assert progress.stage == ConversationStage.QUESTIONS

    def test_to_blob_always_writes_explicit_section(self):
        blob = Progress(role=Role.COMMUNITY, section_index=1, question_index=2).to_blob()
        assert blob["sectionIndex"] == 1
        assert blob["questionIndex"] == 2
        assert blob["role"] == "community"


class TestSmallTypes:
    def test_config_rejects_out_of_range_values(self):
        with pytest.raises(ValueError):
            ChatConfig(temperature=1.5)
        with pytest.raises(ValueError):
            ChatConfig(fallback_threshold=0)

    def test_config_from_dict_keeps_defaults_for_missing_keys(self):
        config = ChatConfig.from_dict({"mode": "ai"}, ChatConfig(temperature=0.3))
        assert config.mode.value == "ai"
        assert config.temperature == 0.3
        assert config.fallback_threshold == 2

    def test_multi_selection_toggle_keeps_insertion_order(self):
        selection = MultiSelection()
        selection.start("b")
        selection.toggle("a")
        selection.toggle("c")
        selection.toggle("a")
        assert selection.selections == ["b", "c"]

    def test_control_action_parse(self):
        assert ControlAction.parse("done_selecting") == ControlAction.DONE_SELECTING
        assert ControlAction.parse("parent") is None
        assert ControlAction.PROCEED_TO_REGISTRATION.is_completion
        assert not ControlAction.CONTINUE.is_completion

    def test_position_key_round_trip(self):
        position = Position(1, 3)
        assert position.key == "section_1_question_3"
        assert Position.from_key(position.key) == position
        assert Position.from_key("budget") is None

    def test_role_parse(self):
        assert Role.parse(" Family ") == Role.FAMILY
        assert Role.parse("nobody") is None
