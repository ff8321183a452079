"""Tests for multi-platform aggregation and ranking."""

import threading

import pytest

from conftest import (
    FailingSearchProvider,
    FakeLookupProvider,
    FakeSearchProvider,
    make_candidate,
)
from pulsefind.core.aggregator import (
    MultiPlatformAggregator,
    create_aggregator,
    fold_platform_results,
    merge_result,
    result_matches,
    select_top_songs,
)
from pulsefind.core.models import SOURCE_FIELDS, Origin, PlatformResult, SourceKind, platform_url
from pulsefind.core.ranking import rank_candidates, ranking_score


def spotify_hit(title="Night Drive", artist="Kid Vector", **kwargs):
    defaults = dict(platform_id="sp1", confidence=90, popularity=71)
    defaults.update(kwargs)
    return PlatformResult(platform=SourceKind.SPOTIFY, title=title, artist=artist, **defaults)


@pytest.fixture
def aggregator_factory():
    created = []

    def _make(*args, **kwargs):
        aggregator = MultiPlatformAggregator(*args, **kwargs)
        created.append(aggregator)
        return aggregator

    yield _make
    for aggregator in created:
        aggregator.shutdown()


class TestResultMatching:
    def test_text_containment(self):
        candidate = make_candidate(title="Night Drive", artist="Kid Vector")
        result = spotify_hit(title="Night Drive (feat. Someone)", artist="Kid Vector, Someone")
        assert result_matches(candidate, result)

    def test_spacing_ignored(self):
        candidate = make_candidate(title="Night Drive", artist="Kid Vector")
        assert result_matches(candidate, spotify_hit(title="NightDrive", artist="KidVector"))

    def test_shared_platform_id(self):
        candidate = make_candidate(title="Different", platform_ids={"spotify": "sp1"})
        assert result_matches(candidate, spotify_hit())

    def test_shared_isrc(self):
        candidate = make_candidate(title="Different", isrc="X1")
        assert result_matches(candidate, spotify_hit(isrc="X1", platform_id="other"))

    def test_unrelated(self):
        candidate = make_candidate(title="Other Song", artist="Other Artist")
        assert not result_matches(candidate, spotify_hit())


class TestMergeAndFold:
    def test_merge_adds_source_and_fields(self):
        merged = merge_result(make_candidate(), spotify_hit(artwork_url="http://art"))
        assert merged.sources == (SourceKind.ACRCLOUD, SourceKind.SPOTIFY)
        assert merged.platform_ids == {"spotify": "sp1"}
        assert merged.popularity == 71
        assert merged.artwork_url == "http://art"

    def test_merge_keeps_existing_fields(self):
        candidate = make_candidate(popularity=10, album="Original")
        merged = merge_result(candidate, spotify_hit(album="Other"))
        assert merged.popularity == 10
        assert merged.album == "Original"

    def test_merge_does_not_mutate(self):
        candidate = make_candidate()
        merge_result(candidate, spotify_hit())
        assert candidate.sources == (SourceKind.ACRCLOUD,)
        assert candidate.platform_ids == {}

    def test_unmatched_result_becomes_candidate(self):
        folded = fold_platform_results(
            [make_candidate()], [spotify_hit(title="Elsewhere", artist="Nobody")]
        )
        assert len(folded) == 2
        assert folded[1].sources == (SourceKind.SPOTIFY,)
        assert folded[1].confidence == 90

    def test_repeat_confirmation_counts_once(self):
        folded = fold_platform_results([make_candidate()], [spotify_hit(), spotify_hit()])
        assert len(folded) == 1
        assert folded[0].sources == (SourceKind.ACRCLOUD, SourceKind.SPOTIFY)

    def test_select_top_songs_distinct(self):
        songs = select_top_songs(
            [make_candidate(title="A"), make_candidate(title="a"), make_candidate(title="B")], 5
        )
        assert [s.title for s in songs] == ["A", "B"]


class TestMultiPlatformAggregator:
    def test_scenario_four_two_sources(self, aggregator_factory):
        aggregator = aggregator_factory(
            [FakeSearchProvider(SourceKind.SPOTIFY, [spotify_hit()])]
        )
        (candidate,) = aggregator.aggregate([make_candidate()])
        assert len(candidate.sources) == 2

    def test_both_platforms(self, aggregator_factory):
        youtube = PlatformResult(
            platform=SourceKind.YOUTUBE, title="Night Drive", artist="Kid Vector",
            platform_id="yt1", confidence=100,
        )
        aggregator = aggregator_factory([
            FakeSearchProvider(SourceKind.SPOTIFY, [spotify_hit()]),
            FakeSearchProvider(SourceKind.YOUTUBE, [youtube]),
        ])
        (candidate,) = aggregator.aggregate([make_candidate()])
        assert candidate.sources == (
            SourceKind.ACRCLOUD, SourceKind.SPOTIFY, SourceKind.YOUTUBE
        )
        assert candidate.platform_ids == {"spotify": "sp1", "youtube": "yt1"}

    def test_failing_platform_contributes_nothing(self, aggregator_factory):
        aggregator = aggregator_factory([
            FailingSearchProvider(SourceKind.YOUTUBE),
            FakeSearchProvider(SourceKind.SPOTIFY, [spotify_hit()]),
        ])
        (candidate,) = aggregator.aggregate([make_candidate()])
        assert candidate.sources == (SourceKind.ACRCLOUD, SourceKind.SPOTIFY)

    def test_hung_platform_times_out_alone(self, aggregator_factory):
        release = threading.Event()

        class HangingSearch:
            platform = SourceKind.YOUTUBE

            def search(self, title, artist):
                release.wait(5.0)
                return []

        aggregator = aggregator_factory(
            [HangingSearch(), FakeSearchProvider(SourceKind.SPOTIFY, [spotify_hit()])],
            timeout=0.3, max_workers=2,
        )
        try:
            (first,) = aggregator.aggregate([make_candidate()])
            (second,) = aggregator.aggregate([make_candidate()])
        finally:
            release.set()
        assert first.sources == (SourceKind.ACRCLOUD, SourceKind.SPOTIFY)
        assert second.sources == (SourceKind.ACRCLOUD, SourceKind.SPOTIFY)

    def test_only_top_k_searched(self, aggregator_factory):
        provider = FakeSearchProvider(SourceKind.SPOTIFY, [])
        aggregator = aggregator_factory([provider], top_k=2)
        aggregator.aggregate([make_candidate(title=t) for t in "ABC"])
        # Searches run concurrently, so arrival order is not fixed
        assert sorted(q[0] for q in provider.queries) == ["A", "B"]

    def test_lookup_fills_id_without_source(self, aggregator_factory):
        aggregator = aggregator_factory([], [FakeLookupProvider({"Night Drive": "1440"})])
        (candidate,) = aggregator.aggregate([make_candidate()])
        assert candidate.platform_ids == {"apple_music": "1440"}
        assert candidate.sources == (SourceKind.ACRCLOUD,)
        assert candidate.to_dict()["urls"]["apple_music_url"] == platform_url("apple_music", "1440")

    def test_empty_input(self, aggregator_factory):
        provider = FakeSearchProvider(SourceKind.SPOTIFY, [spotify_hit()])
        assert aggregator_factory([provider]).aggregate([]) == []
        assert provider.queries == []

    def test_factory(self):
        aggregator = create_aggregator([], [], {"top_k": 3, "timeout": 2.5})
        try:
            assert aggregator.top_k == 3
            assert aggregator.timeout == 2.5
        finally:
            aggregator.shutdown()


class TestRanking:
    def test_source_count_dominates_confidence(self):
        two_sources = make_candidate(
            title="A", confidence=50, sources=(SourceKind.ACRCLOUD, SourceKind.SPOTIFY)
        )
        one_source = make_candidate(title="B", confidence=99, popularity=100)
        ranked = rank_candidates([one_source, two_sources], active_threshold=40)
        assert [c.title for c in ranked] == ["A", "B"]
        assert ranking_score(two_sources) > ranking_score(one_source)

    def test_score_formula(self):
        candidate = make_candidate(confidence=80, popularity=50)
        assert ranking_score(candidate) == pytest.approx(1000 + 800 + 0.5)

    def test_below_threshold_dropped(self):
        ranked = rank_candidates(
            [make_candidate(title="A", confidence=39), make_candidate(title="B", confidence=40)],
            active_threshold=40,
        )
        assert [c.title for c in ranked] == ["B"]

    def test_unconfirmed_dropped(self):
        assert rank_candidates([make_candidate(sources=())], active_threshold=0) == []

    def test_ties_keep_discovery_order(self):
        ranked = rank_candidates(
            [make_candidate(title=t, confidence=70) for t in "ABC"], active_threshold=40
        )
        assert [c.title for c in ranked] == ["A", "B", "C"]

    def test_capped(self):
        ranked = rank_candidates(
            [make_candidate(title=str(i)) for i in range(10)], active_threshold=0, max_results=4
        )
        assert len(ranked) == 4


class TestSourceFields:
    def test_every_source_has_a_rule(self):
        assert set(SOURCE_FIELDS) == set(SourceKind)
        for source in SourceKind:
            assert isinstance(source.origin, Origin)

    def test_platform_keys_are_unique(self):
        keys = [s.platform_key for s in SourceKind if s.platform_key]
        assert len(keys) == len(set(keys))
