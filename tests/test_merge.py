"""Tests for the answer merge engine (usage checks, rewrites, persistence policy)."""

import asyncio
from types import MappingProxyType

import pytest

from fieldsurvey.analysis.merge import AnswerMerger, MergeRequest, find_affected, rewrite_answer
from fieldsurvey.app.errors import MergePersistenceError, MergeUsageError
from fieldsurvey.db.models import ResponseRecord, Survey

OLD = frozenset({"Raquel", "raquel Lyra"})


class RecordingStore:
    """Fake store that records writes and can fail on the n-th call."""

    def __init__(self, fail_on=None, message="connection lost"):
        self.calls = []
        self.fail_on = fail_on
        self.message = message

    def update_response_answers(self, response_id, answers):
        if self.fail_on is not None and len(self.calls) + 1 == self.fail_on:
            raise RuntimeError(self.message)
        self.calls.append((response_id, dict(answers)))


def _seed_responses(repo, answers_by_id):
    repo.upsert_survey(Survey(survey_id="s1", title="Pesquisa"))
    for i, (rid, answers) in enumerate(answers_by_id.items()):
        repo.insert_response("s1", answers, response_id=rid, created_at=f"2024-05-0{i + 1}T10:00:00Z")
    return repo.fetch_responses("s1")


class TestMergeRequest:
    def test_normalizes_sources_and_trims_target(self):
        req = MergeRequest.build("q1", [" Raquel ", "raquel   Lyra"], "  Raquel Lyra ")
        assert req.old_values == OLD
        assert req.new_value == "Raquel Lyra"

    @pytest.mark.parametrize(
        "old_values",
        [[], ["Raquel"], ["Raquel", " Raquel "], ["Raquel", "   "]],
    )
    def test_needs_two_distinct_sources(self, old_values):
        with pytest.raises(MergeUsageError):
            MergeRequest.build("q1", old_values, "Raquel Lyra")

    @pytest.mark.parametrize("target", ["", "   ", None])
    def test_needs_target(self, target):
        with pytest.raises(MergeUsageError):
            MergeRequest.build("q1", ["A", "B"], target)

    def test_usage_error_touches_nothing(self, make_responses):
        store = RecordingStore()
        responses = make_responses({"q1": "A"}, {"q1": "B"})
        with pytest.raises(MergeUsageError):
            AnswerMerger(store).merge("q1", ["A"], "C", responses)
        assert store.calls == []
        assert responses[0].answers == {"q1": "A"}


class TestRewriteAnswer:
    def test_plain_text_replaced_whole(self):
        assert rewrite_answer("  raquel  Lyra", OLD, "Raquel Lyra") == "Raquel Lyra"
        assert rewrite_answer("João", OLD, "Raquel Lyra") == "João"

    def test_multi_choice_keeps_shape(self):
        out = rewrite_answer(["Raquel", "João", "raquel Lyra", 7], OLD, "Raquel Lyra")
        assert out == ["Raquel Lyra", "João", "Raquel Lyra", 7]
        assert isinstance(out, list)

    def test_choice_and_other_independently(self):
        raw = {"opcao": "Raquel", "outro": " raquel Lyra ", "obs": "x"}
        assert rewrite_answer(raw, OLD, "Raquel Lyra") == {
            "opcao": "Raquel Lyra",
            "outro": "Raquel Lyra",
            "obs": "x",
        }

    def test_choice_list(self):
        raw = {"opcao": ["Outro", "Raquel"], "outro": "Feira"}
        assert rewrite_answer(raw, OLD, "Raquel Lyra") == {"opcao": ["Outro", "Raquel Lyra"], "outro": "Feira"}

    def test_explicit_null_choice_kept(self):
        out = rewrite_answer({"opcao": None, "outro": "Raquel"}, OLD, "Raquel Lyra")
        assert out == {"opcao": None, "outro": "Raquel Lyra"}

    def test_key_order_kept(self):
        raw = {"obs": "x", "outro": "Raquel", "opcao": "Outro"}
        assert list(rewrite_answer(raw, OLD, "Raquel Lyra")) == ["obs", "outro", "opcao"]
        assert rewrite_answer(raw, OLD, "Raquel Lyra") == {"opcao": ["Outro", "Raquel Lyra"], "outro": "Feira"}

    def test_unknown_shape_unchanged(self):
        assert rewrite_answer(42, OLD, "Raquel Lyra") == 42
        assert rewrite_answer(None, OLD, "Raquel Lyra") is None


class TestMergeAgainstStore:
    def test_updates_only_matching_responses(self, repo):
        responses = _seed_responses(repo, {
            "r1": {"q1": "Raquel", "q2": "Bom"},
            "r2": {"q1": " raquel  Lyra "},
            "r3": {"q1": ["Raquel", "João"]},
            "r4": {"q1": "RAQUEL"},
            "r5": {"q1": {"opcao": "Outro", "outro": "Marília"}},
        })

        result = AnswerMerger(repo).merge("q1", ["Raquel", "raquel Lyra"], "Raquel Lyra", responses)

        assert result.updated == 3
        stored = {r.response_id: r.answers for r in repo.fetch_responses("s1")}
        assert stored["r1"] == {"q1": "Raquel Lyra", "q2": "Bom"}
        assert stored["r2"] == {"q1": "Raquel Lyra"}
        assert stored["r3"] == {"q1": ["Raquel Lyra", "João"]}
        assert stored["r4"] == {"q1": "RAQUEL"}
        assert stored["r5"] == {"q1": {"opcao": "Outro", "outro": "Marília"}}

    def test_second_run_updates_nothing(self, repo):
        responses = _seed_responses(repo, {"r1": {"q1": "A"}, "r2": {"q1": "B"}, "r3": {"q1": "D"}})
        merger = AnswerMerger(repo)

        assert merger.merge("q1", ["A", "B"], "C", responses).updated == 2
        assert merger.merge("q1", ["A", "B"], "C", responses).updated == 0
        assert merger.merge("q1", ["A", "B"], "C", repo.fetch_responses("s1")).updated == 0

    def test_target_already_present_is_not_rewritten(self, repo):
        responses = _seed_responses(repo, {"r1": {"q1": "A"}, "r2": {"q1": "B"}})
        result = AnswerMerger(repo).merge("q1", ["A", "B"], "A", responses)
        assert result.affected == 2
        assert result.updated == 1
        assert result.response_ids == ("r2",)

    def test_missing_response_fails_fast_keeping_prior_writes(self, repo):
        stored = _seed_responses(repo, {"r1": {"q1": "A"}, "r3": {"q1": "B"}})
        ghost = ResponseRecord(response_id="gone", survey_id="s1", answers={"q1": "A"})
        responses = [stored[1], ghost, stored[0]]  # r1 (oldest) is last in fetch order

        with pytest.raises(MergePersistenceError) as exc_info:
            AnswerMerger(repo).merge("q1", ["A", "B"], "C", responses)

        assert exc_info.value.updated == 1
        assert exc_info.value.response_id == "gone"
        after = {r.response_id: r.answers["q1"] for r in repo.fetch_responses("s1")}
        assert after == {"r1": "C", "r3": "B"}

    def test_atomic_mode_rolls_back_everything(self, repo):
        stored = _seed_responses(repo, {"r1": {"q1": "A"}, "r2": {"q1": "B"}})
        ghost = ResponseRecord(response_id="gone", survey_id="s1", answers={"q1": "A"})

        with pytest.raises(MergePersistenceError) as exc_info:
            AnswerMerger(repo, atomic=True).merge("q1", ["A", "B"], "C", stored + [ghost])

        assert exc_info.value.updated == 0
        assert sorted(r.answers["q1"] for r in repo.fetch_responses("s1")) == ["A", "B"]
        assert sorted(r.answers["q1"] for r in stored) == ["A", "B"]

    def test_atomic_mode_commits_all(self, repo):
        stored = _seed_responses(repo, {"r1": {"q1": "A"}, "r2": {"q1": ["B", "x"]}})
        result = AnswerMerger(repo, atomic=True).merge("q1", ["A", "B"], "C", stored)
        assert result.updated == 2
        assert sorted(str(r.answers["q1"]) for r in repo.fetch_responses("s1")) == ["C", "['C', 'x']"]


class TestMergePolicy:
    def test_writes_in_input_order(self, make_responses):
        store = RecordingStore()
        responses = make_responses({"q": "B"}, {"q": "x"}, {"q": "A"}, {"q": ["A", "B"]})
        AnswerMerger(store).merge("q", ["A", "B"], "C", responses)
        assert [rid for rid, _ in store.calls] == ["r1", "r3", "r4"]

    def test_failure_reports_partial_count_and_message(self, make_responses):
        store = RecordingStore(fail_on=2, message="timeout talking to store")
        responses = make_responses({"q": "A"}, {"q": "B"}, {"q": "A"})

        with pytest.raises(MergePersistenceError) as exc_info:
            AnswerMerger(store).merge("q", ["A", "B"], "C", responses)

        err = exc_info.value
        assert str(err) == "timeout talking to store"
        assert err.updated == 1
        assert err.response_id == "r2"
        assert isinstance(err.__cause__, RuntimeError)
        # Only the persisted record reflects the merge locally.
        assert [r.answers["q"] for r in responses] == ["C", "B", "A"]

    def test_rerun_after_partial_failure_converges(self, make_responses):
        responses = make_responses({"q": "A"}, {"q": "B"}, {"q": "A"})
        with pytest.raises(MergePersistenceError):
            AnswerMerger(RecordingStore(fail_on=2)).merge("q", ["A", "B"], "C", responses)

        result = AnswerMerger(RecordingStore()).merge("q", ["A", "B"], "C", responses)
        assert result.updated == 2
        assert [r.answers["q"] for r in responses] == ["C", "C", "C"]

    def test_other_questions_untouched(self, make_responses):
        store = RecordingStore()
        responses = make_responses({"q": "A", "z": "A"})
        AnswerMerger(store).merge("q", ["A", "B"], "C", responses)
        assert store.calls == [("r1", {"q": "C", "z": "A"})]

    def test_find_affected(self, make_responses):
        responses = make_responses({"q": "a"}, {"q": {"outro": "A"}}, {"q": ["x", "B "]})
        assert [r.response_id for r in find_affected("q", frozenset({"A", "B"}), responses)] == ["r2", "r3"]

    def test_merge_async(self, make_responses):
        store = RecordingStore()
        responses = make_responses({"q": "A"}, {"q": "B"})
        result = asyncio.run(AnswerMerger(store).merge_async("q", ["A", "B"], "C", responses))
        assert result.updated == 2

    def test_read_only_answers_still_converge(self):
        responses = [
            ResponseRecord("r1", "s1", MappingProxyType({"q": "A"})),
            ResponseRecord("r2", "s1", MappingProxyType({"q": "B"})),
        ]
        merger = AnswerMerger(RecordingStore())

        assert merger.merge("q", ["A", "B"], "C", responses).updated == 2
        assert merger.merge("q", ["A", "B"], "C", responses).updated == 0
        assert [r.answers["q"] for r in responses] == ["C", "C"]
