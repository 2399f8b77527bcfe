import logging

from conftest import FakeStore, make_message, reaction, T0
from tracker.metrics import aggregate, aggregate_and_store


def by_author(metrics):
    return {m.author_id: m for m in metrics}


def test_mention_reply_and_edit_scenario():
    from datetime import timedelta

    messages = [
        make_message("A", 0, "hey <@B> can you look at this?"),
        make_message("B", 5, "on it"),
        make_message("B", 20, "done, fixed the typo", edited_timestamp=T0 + timedelta(seconds=30)),
    ]

    metrics = by_author(aggregate(messages))

    assert metrics["A"].mentions_sent == 1
    assert metrics["B"].response_times == [5]
    assert metrics["B"].edited_messages == 1
    assert metrics["B"].total_messages == 2
    assert metrics["B"].edited_ratio == 0.5
    assert metrics["A"].response_times == []


def test_total_messages_sum_to_input_size():
    messages = [make_message(author, i) for i, author in enumerate("ABCABBA")]
    assert sum(m.total_messages for m in aggregate(messages)) == len(messages)


def test_empty_input():
    assert aggregate([]) == []


def test_average_response_time_is_none_without_replies():
    metrics = by_author(aggregate([make_message("A", 0, "solo")]))
    assert metrics["A"].response_times == []
    assert metrics["A"].average_response_time is None


def test_average_response_time_is_mean_of_replies():
    messages = [
        make_message("A", 0, "<@B>"),
        make_message("B", 10, "yes"),
        make_message("A", 20, "<@B> again"),
        make_message("B", 50, "yes again"),
    ]
    metrics = by_author(aggregate(messages))
    assert metrics["B"].response_times == [10, 30]
    assert metrics["B"].average_response_time == 20


def test_self_mention_never_records_response_time():
    messages = [
        make_message("A", 0, "note to self <@A>"),
        make_message("A", 3, "following up"),
    ]
    metrics = by_author(aggregate(messages))
    assert metrics["A"].mentions_sent == 1
    assert metrics["A"].response_times == []


def test_only_first_reply_counts():
    messages = [
        make_message("A", 0, "<@B>"),
        make_message("B", 4, "first"),
        make_message("B", 9, "second"),
    ]
    assert by_author(aggregate(messages))["B"].response_times == [4]


def test_repeated_mention_in_one_message_counts_once_for_response_time():
    messages = [
        make_message("A", 0, "<@B> <@!B> hello?"),
        make_message("B", 7, "hi"),
    ]
    metrics = by_author(aggregate(messages))
    assert metrics["A"].mentions_sent == 2
    assert metrics["B"].response_times == [7]


def test_mention_without_reply_creates_no_record():
    metrics = by_author(aggregate([make_message("A", 0, "<@Z> anyone?")]))
    assert "Z" not in metrics


def test_input_order_does_not_matter():
    messages = [
        make_message("B", 5, "reply"),
        make_message("A", 0, "<@B>"),
    ]
    metrics = by_author(aggregate(messages))
    assert metrics["B"].response_times == [5]
    assert metrics["A"].first_message == T0


def test_first_and_last_message_times():
    messages = [make_message("A", 30), make_message("A", 0), make_message("A", 10)]
    m = by_author(aggregate(messages))["A"]
    assert (m.last_message - m.first_message).total_seconds() == 30


def test_attachments_and_embeds_count_presence_not_totals():
    messages = [
        make_message("A", 0, attachments=["https://cdn/a.png", "https://cdn/b.png"]),
        make_message("A", 1, embeds=[{"title": "x"}, {"title": "y"}, {"title": "z"}]),
        make_message("A", 2),
    ]
    m = by_author(aggregate(messages))["A"]
    assert m.attachments_count == 1
    assert m.embeds_count == 1


def test_reactions_and_lengths():
    messages = [
        make_message("A", 0, "abcd", reactions=[reaction(2), reaction(3, "🔥")]),
        make_message("A", 1, "ab"),
    ]
    m = by_author(aggregate(messages))["A"]
    assert m.total_reactions_received == 5
    assert m.average_reactions == 2.5
    assert m.total_message_length == 6
    assert m.average_message_length == 3


def test_edited_ratio_bounds():
    messages = [
        make_message("A", 0, edited_timestamp=T0),
        make_message("A", 1, edited_timestamp=T0),
        make_message("B", 2),
    ]
    for m in aggregate(messages):
        assert 0 <= m.edited_ratio <= 1
    assert by_author(aggregate(messages))["A"].edited_ratio == 1


def test_to_dict_includes_derived_values():
    data = aggregate([make_message("A", 0, "hi")])[0].to_dict()
    assert data["edited_ratio"] == 0
    assert data["average_message_length"] == 2
    assert data["average_response_time"] is None
    assert data["first_message"].startswith("2025-01-01T12:00:00")


def test_aggregate_and_store_persists_snapshot():
    store = FakeStore()
    result = aggregate_and_store([make_message("A", 0)], store)
    assert store.snapshots == [result]


def test_aggregate_and_store_survives_failed_write(caplog):
    store = FakeStore(succeed=False)
    with caplog.at_level(logging.WARNING):
        result = aggregate_and_store([make_message("A", 0)], store)
    assert len(result) == 1
    assert "disk full" in caplog.text


def test_aggregate_and_store_survives_store_exception():
    class BrokenStore:
        def write_filtered(self, metrics):
            raise OSError("store unreachable")

    assert len(aggregate_and_store([make_message("A", 0)], BrokenStore())) == 1
