"""Tests for title hashing and duplicate selection."""
from types import SimpleNamespace

from title_hash import calculate_similarity, find_similar_groups, generate_title_hash, select_duplicates


def _item(item_id, title, created_at):
    return SimpleNamespace(id=item_id, title=title, created_at=created_at)


def test_reworded_headlines_share_a_hash():
    """Word order, stopwords and simple inflections don't change the key."""
    first = generate_title_hash("Apple Unveils New iPhone")
    second = generate_title_hash("New iPhone Unveiled by Apple")

    assert first == second
    assert first == "apple-iphone-unveil"


def test_hash_drops_punctuation_and_short_words():
    assert generate_title_hash("AI: Is it here? Yes!") == "here-yes"


def test_stopword_only_title_hashes_to_empty():
    assert generate_title_hash("The Is A") == ""


def test_select_duplicates_keeps_newest():
    """Three copies of one story: only the most recently created survives."""
    items = [
        _item(1, "Apple Unveils New iPhone", 100.0),
        _item(2, "New iPhone Unveiled by Apple", 300.0),
        _item(3, "apple unveils new iphone!", 200.0),
    ]

    plan = select_duplicates(items)

    assert [i.id for i in plan.to_keep] == [2]
    assert sorted(plan.delete_ids) == [1, 3]


def test_select_duplicates_leaves_distinct_titles_alone():
    items = [
        _item(1, "Apple Unveils New iPhone", 100.0),
        _item(2, "Tesla Recalls Model 3", 200.0),
    ]

    plan = select_duplicates(items)

    assert len(plan.to_keep) == 2
    assert plan.to_delete == []


def test_empty_hash_titles_are_never_duplicates():
    items = [_item(1, "The A", 100.0), _item(2, "The A", 200.0)]

    plan = select_duplicates(items)

    assert len(plan.to_keep) == 2
    assert plan.to_delete == []


def test_calculate_similarity():
    assert calculate_similarity("Apple Unveils New iPhone", "New iPhone Unveiled by Apple") == 1.0
    assert calculate_similarity("The A", "Apple") == 0.0
    assert calculate_similarity("Apple iPhone", "Tesla Cybertruck") < 0.5


def test_find_similar_groups():
    items = [
        _item(1, "OpenAI launches GPT-5 model", 1.0),
        _item(2, "OpenAI launches GPT-5 model today", 2.0),
        _item(3, "Rivian opens new factory", 3.0),
    ]

    groups = find_similar_groups(items, threshold=0.7)

    assert len(groups) == 1
    assert [i.id for i in groups[0]] == [1, 2]


def test_select_duplicates_skips_repeated_items():
    item = _item(1, "Apple Unveils New iPhone", 100.0)

    plan = select_duplicates([item, item])

    assert [i.id for i in plan.to_keep] == [1]
    assert plan.to_delete == []


def test_stemming_never_produces_a_stopword():
    """'news' stays significant instead of folding into 'new'."""
    assert generate_title_hash("Fox News Reports Outage") == "fox-news-outage-report"
    assert generate_title_hash("Fox News Reports Outage") != generate_title_hash("Fox Reports Outage")
