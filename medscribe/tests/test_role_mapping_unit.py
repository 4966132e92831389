from medscribe.asr.models import DiarizedWord, Utterance
from medscribe.asr.role_mapping import (
    ROLE_CLINICIAN,
    ROLE_PATIENT,
    build_default_role_map,
    first_speaker_tag,
    relabel_utterances,
    role_label_for,
)


def test_first_introduced_speaker_is_treated_as_clinician() -> None:
    words = [
        DiarizedWord(word="Namaste", speaker_tag=2, start=0.0, end=0.5),
        DiarizedWord(word="doctor.", speaker_tag=1, start=0.6, end=1.0),
        DiarizedWord(word="third", speaker_tag=3, start=1.2, end=1.5),
    ]

    mapping = build_default_role_map(list(reversed(words)))

    assert first_speaker_tag(words) == 2
    assert mapping == {2: ROLE_CLINICIAN, 1: ROLE_PATIENT, 3: ROLE_PATIENT}


def test_explicit_overrides_replace_default_roles() -> None:
    words = [
        DiarizedWord(word="I", speaker_tag=1, start=0.0, end=0.2),
        DiarizedWord(word="Okay", speaker_tag=2, start=0.5, end=0.8),
    ]

    mapping = build_default_role_map(words, overrides={1: ROLE_PATIENT, 2: ROLE_CLINICIAN})

    assert mapping == {1: ROLE_PATIENT, 2: ROLE_CLINICIAN}


def test_unmapped_tags_get_generic_label() -> None:
    assert role_label_for({1: ROLE_CLINICIAN}, 1) == ROLE_CLINICIAN
    assert role_label_for({1: ROLE_CLINICIAN}, 4) == "SPEAKER_4"
    assert first_speaker_tag([]) is None
    assert build_default_role_map([]) == {}


def test_relabel_utterances_swaps_roles_without_regrouping() -> None:
    utterances = [
        Utterance(speaker=ROLE_CLINICIAN, start=0.0, end=1.0, text="My head hurts."),
        Utterance(speaker=ROLE_PATIENT, start=1.0, end=2.0, text="Since when?"),
        Utterance(speaker="SPEAKER_3", start=2.0, end=3.0, text="Hello."),
    ]

    relabelled, debug = relabel_utterances(
        utterances,
        {ROLE_CLINICIAN: ROLE_PATIENT, ROLE_PATIENT: ROLE_CLINICIAN},
    )

    assert [item.speaker for item in relabelled] == [ROLE_PATIENT, ROLE_CLINICIAN, "SPEAKER_3"]
    assert [item.text for item in relabelled] == [item.text for item in utterances]
    assert utterances[0].speaker == ROLE_CLINICIAN
    assert debug["relabelled"] == 2
