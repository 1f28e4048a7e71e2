import asyncio

import pytest

from clinic_chat.exceptions import Forbidden, NotFound, PersistenceFailure, ValidationFailed
from clinic_chat.models.conversation import conversation_id_for
from clinic_chat.models.message import SenderType


async def start(chat_service, directory, patient="patient_1", doctor="doctor_1"):
    conversation, _ = await chat_service.get_or_create_conversation(
        directory.users[patient], doctor)
    return conversation


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(chat_service, directory, store):
    first, created = await chat_service.get_or_create_conversation(
        directory.users["patient_1"], "doctor_1")
    second, created_again = await chat_service.get_or_create_conversation(
        directory.users["patient_1"], "doctor_1")

    assert created is True
    assert created_again is False
    assert first.id == second.id == conversation_id_for("patient_1", "doctor_1")
    assert len(store.conversations) == 1


@pytest.mark.asyncio
async def test_doctor_reaches_same_conversation(chat_service, directory, store):
    by_patient = await start(chat_service, directory)
    by_doctor, created = await chat_service.get_or_create_conversation(
        directory.users["doctor_1"], "patient_1")

    assert created is False
    assert by_doctor.id == by_patient.id
    assert len(store.conversations) == 1


@pytest.mark.asyncio
async def test_concurrent_creation_yields_one_conversation(chat_service, directory, store):
    results = await asyncio.gather(*[
        chat_service.get_or_create_conversation(directory.users["patient_1"], "doctor_1")
        for _ in range(5)
    ])

    assert len({conversation.id for conversation, _ in results}) == 1
    assert len(store.conversations) == 1


@pytest.mark.asyncio
async def test_creation_snapshots_participant_details(chat_service, directory):
    conversation = await start(chat_service, directory)

    details = conversation.participant_details
    assert details.user.name == "Jane Doe"
    assert details.doctor.name == "Alice Smith"
    assert details.doctor.prefix == "Dr."
    assert details.doctor.specialization == "Cardiology"


@pytest.mark.asyncio
@pytest.mark.parametrize("requester,other,error", [
    ("patient_1", None, ValidationFailed),
    ("patient_1", "patient_1", ValidationFailed),
    ("patient_1", "nobody", NotFound),
    ("patient_1", "patient_2", NotFound),
    ("doctor_1", "nobody", NotFound),
    ("doctor_1", "doctor_2", ValidationFailed),
    ("doctor_1", "admin_1", ValidationFailed),
    ("admin_1", "doctor_1", Forbidden),
])
async def test_get_or_create_rejections(chat_service, directory, store, requester, other, error):
    with pytest.raises(error):
        await chat_service.get_or_create_conversation(directory.users[requester], other)
    assert store.conversations == {}


@pytest.mark.asyncio
async def test_unread_monotonicity(chat_service, directory, store):
    conversation = await start(chat_service, directory)
    patient = directory.users["patient_1"]

    for n in range(3):
        await chat_service.send_message(conversation.id, patient, f"message {n}")

    stored = store.conversations[conversation.id]
    assert stored.unread_for("doctor_1") == 3
    assert stored.unread_for("patient_1") == 0

    await chat_service.mark_conversation_read(conversation.id, "doctor_1")
    assert store.conversations[conversation.id].unread_for("doctor_1") == 0

    changed = await chat_service.mark_conversation_read(conversation.id, "doctor_1")
    assert changed == 0
    assert store.conversations[conversation.id].unread_for("doctor_1") == 0


@pytest.mark.asyncio
async def test_send_message_sets_summary_and_sender(chat_service, directory, store):
    conversation = await start(chat_service, directory)
    doctor = directory.users["doctor_1"]

    message, updated = await chat_service.send_message(
        conversation.id, doctor, "  Please bring your results.  ")

    assert message.id is not None
    assert message.content == "Please bring your results."
    assert message.sender_type == SenderType.DOCTOR
    assert message.sender_name == "Alice Smith"
    assert message.read_by == ["doctor_1"]
    assert message.is_read is False
    assert updated.last_message == "Please bring your results."
    assert updated.last_message_time == message.created_at
    assert updated.unread_for("patient_1") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", None, 42])
async def test_send_message_rejects_empty_content(chat_service, directory, store, content):
    conversation = await start(chat_service, directory)

    with pytest.raises(ValidationFailed):
        await chat_service.send_message(conversation.id, directory.users["patient_1"], content)
    assert store.messages[conversation.id] == []


@pytest.mark.asyncio
async def test_send_message_rejects_oversized_content(chat_service, directory):
    conversation = await start(chat_service, directory)
    too_long = "x" * (chat_service.settings.MAX_MESSAGE_LENGTH + 1)

    with pytest.raises(ValidationFailed):
        await chat_service.send_message(conversation.id, directory.users["patient_1"], too_long)


@pytest.mark.asyncio
async def test_mark_read_converges_read_receipts(chat_service, directory, store):
    conversation = await start(chat_service, directory)
    await chat_service.send_message(conversation.id, directory.users["patient_1"], "Hi")
    await chat_service.send_message(conversation.id, directory.users["doctor_1"], "Hello")

    changed = await chat_service.mark_conversation_read(conversation.id, "doctor_1")

    assert changed == 1
    patient_msg, doctor_msg = store.messages[conversation.id]
    assert patient_msg.read_by == ["patient_1", "doctor_1"]
    assert patient_msg.is_read is True
    # The reader's own message is untouched
    assert doctor_msg.read_by == ["doctor_1"]
    assert doctor_msg.is_read is False


@pytest.mark.asyncio
async def test_list_messages_is_chronological_and_paginated(chat_service, directory):
    conversation = await start(chat_service, directory)
    patient = directory.users["patient_1"]
    for n in range(5):
        await chat_service.send_message(conversation.id, patient, f"m{n}")

    latest = await chat_service.list_messages(conversation.id, "doctor_1", page=1, page_size=2)
    assert [m.content for m in latest.messages] == ["m3", "m4"]
    assert latest.total_messages == 5
    assert latest.total_pages == 3
    assert latest.has_more is True

    oldest = await chat_service.list_messages(conversation.id, "doctor_1", page=3, page_size=2)
    assert [m.content for m in oldest.messages] == ["m0"]
    assert oldest.has_more is False

    everything = await chat_service.list_messages(conversation.id, "patient_1")
    times = [m.created_at for m in everything.messages]
    assert times == sorted(times)


@pytest.mark.asyncio
@pytest.mark.parametrize("page,size", [(0, 10), (1, 0), (1, 101)])
async def test_list_messages_rejects_bad_paging(chat_service, directory, page, size):
    conversation = await start(chat_service, directory)
    with pytest.raises(ValidationFailed):
        await chat_service.list_messages(conversation.id, "patient_1", page=page, page_size=size)


@pytest.mark.asyncio
async def test_outsider_is_forbidden_everywhere(chat_service, directory):
    conversation = await start(chat_service, directory)
    outsider = directory.users["patient_2"]

    with pytest.raises(Forbidden):
        await chat_service.list_messages(conversation.id, outsider.uid)
    with pytest.raises(Forbidden):
        await chat_service.send_message(conversation.id, outsider, "let me in")
    with pytest.raises(Forbidden):
        await chat_service.mark_conversation_read(conversation.id, outsider.uid)
    with pytest.raises(Forbidden):
        await chat_service.delete_conversation(conversation.id, outsider.uid)


@pytest.mark.asyncio
async def test_missing_conversation_is_not_found(chat_service):
    with pytest.raises(NotFound):
        await chat_service.list_messages("missing", "patient_1")
    with pytest.raises(ValidationFailed):
        await chat_service.require_conversation("", "patient_1")


@pytest.mark.asyncio
async def test_delete_cascades_to_messages(chat_service, directory, store):
    conversation = await start(chat_service, directory)
    for n in range(5):
        await chat_service.send_message(conversation.id, directory.users["patient_1"], f"m{n}")

    removed = await chat_service.delete_conversation(conversation.id, "doctor_1")

    assert removed == 5
    assert conversation.id not in store.messages
    with pytest.raises(NotFound):
        await chat_service.list_messages(conversation.id, "patient_1")


@pytest.mark.asyncio
async def test_two_conversations_one_message_each(chat_service, directory, store):
    c1 = await start(chat_service, directory, "patient_1", "doctor_1")
    c2 = await start(chat_service, directory, "patient_2", "doctor_2")

    await asyncio.gather(
        chat_service.send_message(c1.id, directory.users["patient_1"], "Hi"),
        chat_service.send_message(c2.id, directory.users["patient_2"], "Hello"),
    )

    assert store.conversations[c1.id].unread_for("doctor_1") == 1
    assert store.conversations[c2.id].unread_for("doctor_2") == 1
    assert [m.content for m in store.messages[c1.id]] == ["Hi"]
    assert [m.content for m in store.messages[c2.id]] == ["Hello"]


@pytest.mark.asyncio
async def test_list_conversations_most_recent_first(chat_service, directory):
    c1 = await start(chat_service, directory, "patient_1", "doctor_1")
    c2 = await start(chat_service, directory, "patient_1", "doctor_2")
    await chat_service.send_message(c1.id, directory.users["patient_1"], "newer")

    listed = await chat_service.list_conversations("patient_1")
    assert [c.id for c in listed] == [c1.id, c2.id]
    assert await chat_service.list_conversations("patient_2") == []


@pytest.mark.asyncio
async def test_persistence_failure_leaves_state_unchanged(chat_service, directory, store):
    conversation = await start(chat_service, directory)
    store.fail_writes = True

    with pytest.raises(PersistenceFailure):
        await chat_service.send_message(conversation.id, directory.users["patient_1"], "Hi")

    stored = store.conversations[conversation.id]
    assert store.messages[conversation.id] == []
    assert stored.last_message == ""
    assert stored.unread_for("doctor_1") == 0
