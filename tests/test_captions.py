import pytest

from modules.captions.estimator import estimate_captions, split_sentences


def _assert_tiles(captions, duration):
    assert captions[0].start == 0.0
    assert captions[-1].end == duration
    for prev, cur in zip(captions, captions[1:]):
        assert cur.start == prev.end
    for cap in captions:
        assert cap.start <= cap.end


def test_split_sentences_keeps_trailing_fragment():
    assert split_sentences("Hello there. How are you? Fine") == ["Hello there.", " How are you?", " Fine"]


def test_split_sentences_groups_repeated_punctuation():
    assert split_sentences("Wait... What?!") == ["Wait...", " What?!"]


def test_proportional_allocation():
    captions = estimate_captions("Hi. Hello.", 6.0)
    assert [c.text for c in captions] == ["Hi.", "Hello."]
    # "Hi." is 3 chars, " Hello." is 7 chars
    assert captions[0].end == pytest.approx(1.8)
    _assert_tiles(captions, 6.0)


def test_no_terminators_gives_single_caption():
    captions = estimate_captions("we ship worldwide", 2.5)
    assert len(captions) == 1
    assert captions[0].text == "we ship worldwide"
    assert (captions[0].start, captions[0].end) == (0.0, 2.5)


def test_empty_text_spans_full_duration():
    captions = estimate_captions("", 3.2)
    assert len(captions) == 1
    assert captions[0].text == ""
    assert (captions[0].start, captions[0].end) == (0.0, 3.2)


def test_zero_duration():
    captions = estimate_captions("One. Two. Three.", 0.0)
    assert len(captions) == 3
    _assert_tiles(captions, 0.0)


@pytest.mark.parametrize(
    "text,duration",
    [
        ("Our store opens at nine. Returns take five days! Anything else?", 7.31),
        ("A. B. C. D. E. F. G.", 1.0 / 3.0),
        ("Only punctuation ...", 0.9),
        ("   ", 1.7),
    ],
)
def test_captions_tile_duration_exactly(text, duration):
    _assert_tiles(estimate_captions(text, duration), duration)


def test_negative_duration_rejected():
    with pytest.raises(ValueError):
        estimate_captions("Hi.", -1.0)


def test_to_dict_shape():
    caption = estimate_captions("Hi.", 1.0)[0]
    assert caption.to_dict() == {"text": "Hi.", "start": 0.0, "end": 1.0}
