"""Tests for the conversation session manager."""

import asyncio
import pytest
from datetime import datetime, timezone

from intake.db.database_models import UserDO
from intake.errors import (
    ConflictError,
    ConversationNotFoundError,
    EmptyMessageError,
    ExternalCallError,
    UserNotFoundError,
)
from intake.models.attachment import AttachmentUpload
from intake.models.conversation import ONBOARDING_ID, STATUS_COMPLETE
from intake.services.quota_ledger import BYTES_PER_MB
from intake.services.session_manager import fallback_title, normalize_title

from conftest import EMAIL, OTHER_EMAIL


SUMMARY_REPLY = (
    "Role & Responsibilities: accounts payable lead. Tools & Systems: QuickBooks and Excel. "
    "Time Allocation: 60% of your time on invoices. Pain Points: manual re-keying. "
    "Does this summary look accurate?"
)


def png(size: int = 2048, **kwargs) -> AttachmentUpload:
    kwargs.setdefault("name", "screen.png")
    return AttachmentUpload(media_type="image/png", data=b"\x01" * size, **kwargs)


async def start_task(manager) -> str:
    started = await manager.create_task(EMAIL)
    return started.conversation_id


class TestTitleHelpers:
    """SUT: normalize_title / fallback_title"""

    def test_strips_quotes_and_whitespace(self):
        """Surrounding quotes and whitespace are removed."""
        assert normalize_title('  "Vendor Invoice Processing"\n') == "Vendor Invoice Processing"

    def test_truncates(self):
        """Long titles are cut to the limit with an ellipsis."""
        title = normalize_title("Word " * 30, max_length=50)
        assert len(title) <= 50
        assert title.endswith("...")

    def test_too_short(self):
        """Fewer than three meaningful characters is no title."""
        assert normalize_title("?!") is None
        assert normalize_title(" a. ") is None
        assert normalize_title(None) is None

    def test_fallback_format(self):
        """The fallback names the creation moment."""
        moment = datetime(2024, 3, 7, 14, 5, tzinfo=timezone.utc)
        assert fallback_title(moment) == "Task Mar 07, 2024 14:05"


class TestSessionManager:
    """Tests for SessionManager."""

    class TestCreateOnboarding:
        """SUT: SessionManager.create_onboarding"""

        async def test_creates_document(self, user, manager, store):
            """Onboarding starts with a greeting naming the user."""
            started = await manager.create_onboarding(EMAIL)
            assert started.conversation_id == ONBOARDING_ID
            assert "Ada" in started.greeting
            assert "Acme Corp" in started.greeting
            assert await store.exists(EMAIL, ONBOARDING_ID)

        async def test_second_attempt_refused(self, user, manager):
            """Onboarding is unique per user."""
            await manager.create_onboarding(EMAIL)
            with pytest.raises(ConflictError) as exc:
                await manager.create_onboarding(EMAIL)
            assert exc.value.code == ConflictError.ONBOARDING_EXISTS

        async def test_refused_after_completion(self, onboarded, manager):
            """A completed user cannot restart onboarding."""
            with pytest.raises(ConflictError) as exc:
                await manager.create_onboarding(EMAIL)
            assert exc.value.code == ConflictError.ONBOARDING_COMPLETE

        async def test_unknown_user(self, manager):
            """Unknown users are refused."""
            with pytest.raises(UserNotFoundError):
                await manager.create_onboarding("nobody@example.com")

    class TestAppendOnboardingMessage:
        """SUT: SessionManager.append_onboarding_message"""

        async def test_scenario_new_user(self, user, manager):
            """One exchange leaves exactly one onboarding entry with two messages."""
            await manager.create_onboarding(EMAIL)
            reply = await manager.append_onboarding_message(EMAIL, "I am a developer")
            assert reply.reply_text

            listing = await manager.list_conversations(EMAIL)
            assert len(listing) == 1
            assert listing[0].type == "onboarding"
            assert listing[0].message_count == 2

        async def test_append_shape(self, user, manager):
            """After an append the last two messages are the user turn and the reply."""
            await manager.create_onboarding(EMAIL)
            reply = await manager.append_onboarding_message(EMAIL, "I manage payroll")
            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert [m.role for m in doc.messages[-2:]] == ["user", "assistant"]
            assert doc.messages[-2].text == "I manage payroll"
            assert doc.messages[-1].message_id == reply.message_id

        async def test_history_and_prompt_sent(self, user, manager, model_client):
            """The model sees the full ordered history and the onboarding prompt."""
            await manager.create_onboarding(EMAIL)
            await manager.append_onboarding_message(EMAIL, "first")
            await manager.append_onboarding_message(EMAIL, "second")
            history, system_context = model_client.turn_calls[-1]
            assert [t["role"] for t in history] == ["user", "assistant", "user"]
            assert history[-1]["content"][0]["text"] == "second"
            assert "onboarding interview" in system_context
            assert "Acme Corp" in system_context
            assert "What's your job title?" in system_context

        async def test_summary_candidate_flag(self, user, manager, model_client):
            """A reply shaped like a summary is flagged."""
            await manager.create_onboarding(EMAIL)
            model_client.replies = ["What is your job title?", SUMMARY_REPLY]
            first = await manager.append_onboarding_message(EMAIL, "hello")
            second = await manager.append_onboarding_message(EMAIL, "that's all")
            assert first.is_summary_candidate is False
            assert second.is_summary_candidate is True

        async def test_not_started(self, user, manager):
            """Appending before onboarding starts is NotFound."""
            with pytest.raises(ConversationNotFoundError):
                await manager.append_onboarding_message(EMAIL, "hello")

        async def test_blank_text(self, user, manager):
            """Blank text is refused before anything is stored."""
            await manager.create_onboarding(EMAIL)
            with pytest.raises(EmptyMessageError):
                await manager.append_onboarding_message(EMAIL, "   ")
            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert doc.messages == ()

        async def test_after_completion(self, onboarded, manager):
            """A completed onboarding takes no more messages."""
            with pytest.raises(ConflictError) as exc:
                await manager.append_onboarding_message(EMAIL, "one more thing")
            assert exc.value.code == ConflictError.ONBOARDING_ALREADY_COMPLETE

        async def test_model_failure_keeps_user_message(self, user, manager, model_client):
            """A failed model call leaves the user's message saved."""
            await manager.create_onboarding(EMAIL)
            model_client.fail_turn = True
            with pytest.raises(ExternalCallError):
                await manager.append_onboarding_message(EMAIL, "I run the front desk")

            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert len(doc.messages) == 1
            assert doc.messages[0].role == "user"
            assert doc.messages[0].text == "I run the front desk"

            model_client.fail_turn = False
            await manager.append_onboarding_message(EMAIL, "Still there?")
            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert [m.role for m in doc.messages] == ["user", "user", "assistant"]

    class TestCompleteOnboarding:
        """SUT: SessionManager.complete_onboarding"""

        async def test_completes(self, user, manager, user_repo):
            """Completion writes the summary and sets the user flag."""
            await manager.create_onboarding(EMAIL)
            await manager.complete_onboarding(EMAIL, "X")
            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert doc.status == STATUS_COMPLETE
            assert doc.summary == "X"
            assert doc.completed_at is not None
            assert user_repo.get(EMAIL).onboarding_complete is True

        async def test_blank_summary(self, user, manager):
            """A blank summary is refused."""
            await manager.create_onboarding(EMAIL)
            with pytest.raises(EmptyMessageError):
                await manager.complete_onboarding(EMAIL, " ")

        async def test_not_started(self, user, manager):
            """Completing a missing onboarding is NotFound."""
            with pytest.raises(ConversationNotFoundError):
                await manager.complete_onboarding(EMAIL, "X")

        async def test_twice(self, onboarded, manager):
            """Completing again is a conflict."""
            with pytest.raises(ConflictError) as exc:
                await manager.complete_onboarding(EMAIL, "Y")
            assert exc.value.code == ConflictError.ONBOARDING_ALREADY_COMPLETE

        async def test_flag_write_failure_repaired(self, user, manager, user_repo, monkeypatch):
            """If the flag write fails, the next load repairs it from the document."""
            await manager.create_onboarding(EMAIL)

            def broken(email, complete=True):
                raise RuntimeError("registry unavailable")

            monkeypatch.setattr(user_repo, "set_onboarding_complete", broken)
            with pytest.raises(RuntimeError):
                await manager.complete_onboarding(EMAIL, "X")
            monkeypatch.undo()

            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert doc.status == STATUS_COMPLETE
            assert user_repo.get(EMAIL).onboarding_complete is False

            # create_task syncs the flag before checking it
            started = await manager.create_task(EMAIL)
            assert started.conversation_id != ONBOARDING_ID
            assert user_repo.get(EMAIL).onboarding_complete is True

        async def test_retry_after_flag_failure(self, user, manager, user_repo, monkeypatch):
            """Retrying completion only syncs the flag and keeps the first summary."""
            await manager.create_onboarding(EMAIL)

            def broken(email, complete=True):
                raise RuntimeError("registry unavailable")

            monkeypatch.setattr(user_repo, "set_onboarding_complete", broken)
            with pytest.raises(RuntimeError):
                await manager.complete_onboarding(EMAIL, "first summary")
            monkeypatch.undo()

            await manager.complete_onboarding(EMAIL, "second summary")
            doc = await manager.get_conversation(EMAIL, ONBOARDING_ID)
            assert doc.summary == "first summary"
            assert user_repo.get(EMAIL).onboarding_complete is True

        async def test_sync_idempotent(self, onboarded, manager):
            """sync_onboarding_flag is a no-op once consistent."""
            assert await manager.sync_onboarding_flag(EMAIL) is False
            assert await manager.sync_onboarding_flag(EMAIL) is False

    class TestCreateTask:
        """SUT: SessionManager.create_task"""

        async def test_gated_on_onboarding(self, user, manager):
            """Tasks are refused until onboarding completes, then allowed."""
            with pytest.raises(ConflictError) as exc:
                await manager.create_task(EMAIL)
            assert exc.value.code == ConflictError.ONBOARDING_INCOMPLETE

            await manager.create_onboarding(EMAIL)
            with pytest.raises(ConflictError):
                await manager.create_task(EMAIL)

            await manager.complete_onboarding(EMAIL, "X")
            started = await manager.create_task(EMAIL)
            assert started.conversation_id != ONBOARDING_ID
            assert started.greeting

        async def test_fresh_ids(self, onboarded, manager):
            """Every task gets its own id."""
            ids = {await start_task(manager) for _ in range(3)}
            assert len(ids) == 3

    class TestAppendTaskMessage:
        """SUT: SessionManager.append_task_message"""

        async def test_title_derived_once(self, onboarded, manager, model_client):
            """The title comes from the first user message and never changes."""
            conversation_id = await start_task(manager)
            first = await manager.append_task_message(EMAIL, conversation_id, "I reconcile the budget monthly")
            assert first.derived_title == "Monthly Budget Reconciliation"
            assert model_client.title_calls == ["I reconcile the budget monthly"]

            model_client.title = "Something Else Entirely"
            second = await manager.append_task_message(EMAIL, conversation_id, "It takes two days")
            third = await manager.append_task_message(EMAIL, conversation_id, "Using Excel")
            assert second.derived_title is None
            assert third.derived_title is None
            assert len(model_client.title_calls) == 1

            doc = await manager.get_conversation(EMAIL, conversation_id)
            assert doc.title == "Monthly Budget Reconciliation"
            assert len(doc.messages) == 6

        async def test_title_truncated(self, onboarded, manager, model_client):
            """Long derived titles are truncated."""
            model_client.title = "Quarterly " * 10
            conversation_id = await start_task(manager)
            reply = await manager.append_task_message(EMAIL, conversation_id, "Quarterly close")
            assert len(reply.derived_title) <= 50
            assert reply.derived_title.endswith("...")

        async def test_title_fallback_on_short_output(self, onboarded, manager, model_client):
            """Unusable title output falls back to a dated title."""
            model_client.title = '""'
            conversation_id = await start_task(manager)
            reply = await manager.append_task_message(EMAIL, conversation_id, "stuff")
            assert reply.derived_title.startswith("Task ")

        async def test_title_fallback_on_failure(self, onboarded, manager, model_client):
            """A failed title call does not fail the append."""
            model_client.fail_title = True
            conversation_id = await start_task(manager)
            reply = await manager.append_task_message(EMAIL, conversation_id, "Weekly payroll run")
            assert reply.reply_text
            assert reply.derived_title.startswith("Task ")
            doc = await manager.get_conversation(EMAIL, conversation_id)
            assert doc.title == reply.derived_title

        async def test_title_timeout_keeps_reply(self, onboarded, manager, model_client, monkeypatch):
            """A title call failing with any error still leaves the reply saved and a fallback title."""
            async def timed_out(first_user_message):
                raise TimeoutError("title call timed out")

            monkeypatch.setattr(model_client, "derive_title", timed_out)
            conversation_id = await start_task(manager)
            reply = await manager.append_task_message(EMAIL, conversation_id, "Month-end accruals")

            assert reply.derived_title.startswith("Task ")
            doc = await manager.get_conversation(EMAIL, conversation_id)
            assert [m.role for m in doc.messages] == ["user", "assistant"]
            assert doc.messages[-1].text == reply.reply_text
            assert doc.title == reply.derived_title

        async def test_reply_saved_before_title(self, onboarded, manager, model_client, monkeypatch):
            """The assistant turn is on disk by the time the title is requested."""
            conversation_id = await start_task(manager)
            seen = []

            async def inspecting(first_user_message):
                doc = await manager.get_conversation(EMAIL, conversation_id)
                seen.append([m.role for m in doc.messages])
                return "Vendor Onboarding"

            monkeypatch.setattr(model_client, "derive_title", inspecting)
            await manager.append_task_message(EMAIL, conversation_id, "Setting up new vendors")
            assert seen == [["user", "assistant"]]

        async def test_greeting_in_context(self, onboarded, manager, model_client):
            """The model is told which opening question the user is answering."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Payroll")
            _, system_context = model_client.turn_calls[-1]
            assert "What task or aspect of your job would you like to describe?" in system_context

        async def test_task_prompt(self, onboarded, manager, model_client):
            """Task turns use the task system prompt."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Filing expense reports")
            _, system_context = model_client.turn_calls[-1]
            assert "document a specific work task" in system_context

        async def test_oversized_attachment_dropped(self, onboarded, manager, ledger):
            """An 11 MiB attachment is dropped; the text still goes through."""
            conversation_id = await start_task(manager)
            before = ledger.usage_mb(EMAIL)

            await manager.append_task_message(
                EMAIL, conversation_id, "See the attached export",
                [png(16, byte_size=11 * BYTES_PER_MB)]
            )

            doc = await manager.get_conversation(EMAIL, conversation_id)
            user_message = doc.messages[-2]
            assert user_message.text == "See the attached export"
            assert user_message.attachments == []
            assert ledger.usage_mb(EMAIL) == before

        async def test_attachment_stored(self, onboarded, manager, ledger, model_client):
            """An admitted attachment is referenced by the user message."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Screenshot attached", [png(4096)])

            doc = await manager.get_conversation(EMAIL, conversation_id)
            parts = doc.messages[-2].attachments
            assert len(parts) == 1
            assert parts[0].size_bytes == 4096
            assert parts[0].file.startswith(doc.messages[-2].message_id)
            assert ledger.usage_mb(EMAIL) == pytest.approx(4096 / BYTES_PER_MB)
            assert model_client.turn_calls[-1][0][-1]["content"][1]["type"] == "image"

        async def test_onboarding_is_not_a_task(self, onboarded, manager):
            """The onboarding conversation cannot take task messages."""
            with pytest.raises(ConflictError) as exc:
                await manager.append_task_message(EMAIL, ONBOARDING_ID, "hi")
            assert exc.value.code == ConflictError.NOT_A_TASK

        async def test_unknown_conversation(self, onboarded, manager):
            """Appending to a missing task is NotFound."""
            with pytest.raises(ConversationNotFoundError):
                await manager.append_task_message(EMAIL, "does-not-exist", "hi")

        async def test_concurrent_appends_lose_update(self, onboarded, manager, model_client):
            """Two appends racing on one document: the last save wins and one exchange is lost."""
            conversation_id = await start_task(manager)
            model_client.turn_calls.clear()
            model_client.replies = ["reply one", "reply two"]
            model_client.gate = asyncio.Event()

            first = asyncio.create_task(manager.append_task_message(EMAIL, conversation_id, "first"))
            second = asyncio.create_task(manager.append_task_message(EMAIL, conversation_id, "second"))
            for _ in range(500):
                if len(model_client.turn_calls) == 2:
                    break
                await asyncio.sleep(0.01)
            assert len(model_client.turn_calls) == 2

            model_client.gate.set()
            replies = await asyncio.gather(first, second)
            assert {r.reply_text for r in replies} == {"reply one", "reply two"}

            doc = await manager.get_conversation(EMAIL, conversation_id)
            assert len(doc.messages) < 4
            assert len([m for m in doc.messages if m.role == "assistant"]) == 1

    class TestListAndGet:
        """SUT: SessionManager.list_conversations / get_conversation"""

        async def test_onboarding_first_then_recent_tasks(self, onboarded, manager):
            """Onboarding leads, tasks follow newest first."""
            older = await start_task(manager)
            newer = await start_task(manager)
            await manager.append_task_message(EMAIL, older, "bump the older one")

            listing = await manager.list_conversations(EMAIL)
            assert [s.conversation_id for s in listing] == [ONBOARDING_ID, older, newer]
            assert listing[0].title == "Onboarding"
            assert listing[1].title == "Monthly Budget Reconciliation"
            assert listing[2].title == "Untitled"

        async def test_list_empty(self, user, manager):
            """A user without conversations has an empty listing."""
            assert await manager.list_conversations(EMAIL) == []

        async def test_get_missing(self, user, manager):
            """A missing conversation reads as None."""
            assert await manager.get_conversation(EMAIL, "nope") is None

    class TestDeleteConversation:
        """SUT: SessionManager.delete_conversation"""

        async def test_delete_releases_quota(self, onboarded, manager, ledger, attachments):
            """Deleting a task removes it and credits its attachment bytes back."""
            keep = await start_task(manager)
            drop = await start_task(manager)
            await manager.append_task_message(EMAIL, keep, "kept file", [png(1024)])
            await manager.append_task_message(EMAIL, drop, "dropped file", [png(8192)])
            before = ledger.usage_mb(EMAIL)

            assert await manager.delete_conversation(EMAIL, drop) is True

            assert await manager.get_conversation(EMAIL, drop) is None
            assert ledger.usage_mb(EMAIL) == pytest.approx(before - 8192 / BYTES_PER_MB)
            assert all(f.startswith(f"{keep}/") for f in await attachments.list_files(EMAIL))

        async def test_onboarding_not_deletable(self, onboarded, manager):
            """The onboarding conversation is never deleted."""
            with pytest.raises(ConflictError) as exc:
                await manager.delete_conversation(EMAIL, ONBOARDING_ID)
            assert exc.value.code == ConflictError.ONBOARDING_NOT_DELETABLE
            assert await manager.get_conversation(EMAIL, ONBOARDING_ID) is not None

        async def test_missing(self, onboarded, manager):
            """Deleting a missing conversation returns False."""
            assert await manager.delete_conversation(EMAIL, "nope") is False

        async def test_release_failure_tolerated(self, onboarded, manager, attachments, monkeypatch):
            """The document is deleted even if the attachment purge fails."""
            conversation_id = await start_task(manager)

            async def broken(email, conversation_id):
                raise OSError("device busy")

            monkeypatch.setattr(attachments, "release", broken)
            assert await manager.delete_conversation(EMAIL, conversation_id) is True
            assert await manager.get_conversation(EMAIL, conversation_id) is None

    class TestAdministration:
        """SUT: SessionManager.get_user_stats / list_user_stats / delete_user / export_user / export_all"""

        async def test_last_active_stamped(self, user, manager):
            """Sending a message records the user's activity time."""
            assert (await manager.get_user_stats(EMAIL)).last_active is None
            await manager.create_onboarding(EMAIL)
            await manager.append_onboarding_message(EMAIL, "I run payroll")
            assert (await manager.get_user_stats(EMAIL)).last_active is not None

        async def test_list_user_stats(self, onboarded, manager, user_repo):
            """Every registered user is listed with organization totals."""
            user_repo.create(UserDO(email=OTHER_EMAIL, name="Grace"))
            await start_task(manager)

            stats, totals = await manager.list_user_stats()
            assert [s.email for s in stats] == [EMAIL, OTHER_EMAIL]
            assert totals.total_users == 2
            assert totals.onboarding_complete == 1
            assert totals.total_tasks == 1
            assert totals.total_messages == 2

        async def test_delete_user(self, onboarded, manager, store, user_repo):
            """Deleting a user removes the namespace and then the record."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Receipts", [png(100)])

            await manager.delete_user(EMAIL)

            assert not store.user_dir(EMAIL).exists()
            assert user_repo.get(EMAIL) is None
            with pytest.raises(UserNotFoundError):
                await manager.delete_user(EMAIL)

        async def test_delete_user_without_namespace(self, user, manager, user_repo):
            """A user who never chatted can still be deleted."""
            await manager.delete_user(EMAIL)
            assert user_repo.get(EMAIL) is None

        async def test_export_all(self, onboarded, manager, user_repo, store):
            """The full export lists every user and every readable conversation."""
            user_repo.create(UserDO(email=OTHER_EMAIL, name="Grace"))
            conversation_id = await start_task(manager)
            (store.user_dir(EMAIL) / "broken.json").write_text("{oops", encoding="utf-8")

            export = await manager.export_all()
            assert [u["email"] for u in export["users"]] == [EMAIL, OTHER_EMAIL]
            assert {(c["user_email"], c["conversation_id"]) for c in export["conversations"]} == {
                (EMAIL, ONBOARDING_ID), (EMAIL, conversation_id),
            }

        async def test_stats(self, onboarded, manager):
            """Stats count tasks and every message."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Invoice approvals")
            await start_task(manager)

            stats = await manager.get_user_stats(EMAIL)
            assert stats.task_count == 2
            assert stats.total_messages == 4
            assert stats.onboarding_complete is True
            assert stats.name == "Ada"

        async def test_stats_unknown_user(self, manager):
            """Stats for an unknown user raise."""
            with pytest.raises(UserNotFoundError):
                await manager.get_user_stats("nobody@example.com")

        async def test_export(self, onboarded, manager):
            """The export carries the user, every conversation and the attachment listing."""
            conversation_id = await start_task(manager)
            await manager.append_task_message(EMAIL, conversation_id, "Scanned receipts", [png(100)])

            export = await manager.export_user(EMAIL)
            assert export["user"]["email"] == EMAIL
            assert {c["conversation_id"] for c in export["conversations"]} == {ONBOARDING_ID, conversation_id}
            assert export["attachments_info"]["count"] == 1
            assert export["attachments_info"]["files"][0]["path"].startswith(f"attachments/{conversation_id}/")
