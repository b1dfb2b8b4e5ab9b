from datetime import datetime, timedelta

import pytest

from kertaus.scheduler import (
    GRADE_MAP,
    MIN_EASINESS,
    CardMemoryState,
    InvalidRatingError,
    InvalidStateError,
    ReviewRating,
    compute_next_state,
    preview_next_states,
    round_half_up,
)

NOW = datetime(2024, 1, 1)


def state(reps=0, ef=2.5, interval=0) -> CardMemoryState:
    return CardMemoryState(
        repetition_number=reps,
        easiness_factor=ef,
        interval_days=interval,
        next_review_date=NOW,
    )


def expected_ef(ef: float, grade: int) -> float:
    return max(ef + (0.1 - (5 - grade) * (0.08 + (5 - grade) * 0.02)), 1.3)


def test_grade_map():
    assert GRADE_MAP == {
        ReviewRating.AGAIN: 1,
        ReviewRating.HARD: 3,
        ReviewRating.GOOD: 4,
        ReviewRating.EASY: 5,
    }


def test_fresh_state_defaults():
    fresh = CardMemoryState.fresh(NOW)
    assert fresh.repetition_number == 0
    assert fresh.easiness_factor == 2.5
    assert fresh.interval_days == 0
    assert fresh.next_review_date == NOW


def test_first_good_review_from_fresh_card():
    result = compute_next_state(state(), "good", NOW)

    assert result.repetition_number == 1
    assert result.interval_days == 1
    assert result.easiness_factor == pytest.approx(expected_ef(2.5, 4))
    assert result.next_review_date == datetime(2024, 1, 2)


@pytest.mark.parametrize("rating", ["hard", "good", "easy"])
def test_first_success_is_one_day(rating):
    result = compute_next_state(state(ef=1.8), rating, NOW)
    assert (result.repetition_number, result.interval_days) == (1, 1)


@pytest.mark.parametrize("ef", [1.3, 2.0, 2.5, 3.1])
def test_second_success_is_six_days_regardless_of_easiness(ef):
    result = compute_next_state(state(reps=1, ef=ef, interval=1), "good", NOW)
    assert result.repetition_number == 2
    assert result.interval_days == 6


def test_third_success_multiplies_by_new_easiness():
    result = compute_next_state(state(reps=2, ef=2.5, interval=6), "easy", NOW)

    ef = expected_ef(2.5, 5)
    assert result.repetition_number == 3
    assert result.easiness_factor == pytest.approx(ef)
    assert result.interval_days == round_half_up(6 * result.easiness_factor)
    assert result.interval_days == 16


def test_again_resets_learning_cycle():
    result = compute_next_state(state(reps=5, ef=2.0, interval=20), "again", NOW)

    assert result.repetition_number == 0
    assert result.interval_days == 1
    assert result.easiness_factor == pytest.approx(expected_ef(2.0, 1))
    assert result.easiness_factor >= MIN_EASINESS
    assert result.next_review_date == NOW + timedelta(days=1)


@pytest.mark.parametrize(
    "reps,ef,interval", [(0, 2.5, 0), (1, 1.3, 1), (7, 2.9, 180), (3, 1.31, 12)]
)
def test_again_always_resets(reps, ef, interval):
    result = compute_next_state(state(reps, ef, interval), ReviewRating.AGAIN, NOW)
    assert (result.repetition_number, result.interval_days) == (0, 1)


def test_repeated_again_never_drops_below_floor():
    current = state(reps=3, ef=1.4, interval=10)
    for _ in range(25):
        current = compute_next_state(current, "again", NOW)
        assert current.easiness_factor >= MIN_EASINESS
    assert current.easiness_factor == MIN_EASINESS


@pytest.mark.parametrize("rating", list(ReviewRating))
def test_easiness_floor_holds_for_every_rating(rating):
    result = compute_next_state(state(reps=4, ef=1.3, interval=9), rating, NOW)
    assert result.easiness_factor >= MIN_EASINESS


def test_hard_lowers_easiness():
    result = compute_next_state(state(reps=3, ef=2.5, interval=10), "hard", NOW)
    assert result.easiness_factor < 2.5
    assert result.repetition_number == 4


def test_intervals_grow_with_consecutive_good_reviews():
    current = state()
    intervals = []
    for _ in range(6):
        current = compute_next_state(current, "good", NOW)
        intervals.append(current.interval_days)
    assert intervals[:2] == [1, 6]
    assert intervals == sorted(intervals)


@pytest.mark.parametrize("rating", list(ReviewRating))
@pytest.mark.parametrize("reps,interval", [(0, 0), (2, 6), (4, 40)])
def test_next_review_date_is_now_plus_interval(rating, reps, interval):
    now = datetime(2024, 3, 10, 14, 30)
    result = compute_next_state(state(reps, 2.2, interval), rating, now)
    assert result.next_review_date == now + timedelta(days=result.interval_days)


def test_deterministic():
    start = state(reps=3, ef=2.36, interval=15)
    assert compute_next_state(start, "hard", NOW) == compute_next_state(
        start, "hard", NOW
    )


def test_input_state_is_not_mutated():
    start = state(reps=2, ef=2.5, interval=6)
    compute_next_state(start, "good", NOW)
    assert start == state(reps=2, ef=2.5, interval=6)


def test_rounding_is_half_up():
    assert round_half_up(6.5) == 7
    assert round_half_up(12.5) == 13
    assert round_half_up(0.5) == 1
    assert round_half_up(12.49) == 12
    assert round_half_up(12.51) == 13


def test_halfway_interval_rounds_up():
    # ef stays clamped at 1.3, 5 * 1.3 lands on 6.5
    result = compute_next_state(state(reps=3, ef=1.3, interval=5), "hard", NOW)
    assert result.easiness_factor == MIN_EASINESS
    assert result.interval_days == 7


def test_unknown_rating_rejected():
    with pytest.raises(InvalidRatingError, match="again, hard, good, easy"):
        compute_next_state(state(), "Good", NOW)
    with pytest.raises(InvalidRatingError):
        compute_next_state(state(), "perfect", NOW)


@pytest.mark.parametrize("reps,interval", [(-1, 0), (0, -3)])
def test_negative_state_rejected(reps, interval):
    with pytest.raises(InvalidStateError):
        compute_next_state(state(reps=reps, interval=interval), "good", NOW)


def test_scheduler_errors_are_value_errors():
    with pytest.raises(ValueError):
        compute_next_state(state(), "nope", NOW)


def test_preview_covers_every_rating():
    previews = preview_next_states(state(reps=2, ef=2.5, interval=6), NOW)
    assert set(previews) == set(ReviewRating)
    assert previews[ReviewRating.AGAIN].interval_days == 1
    assert (
        previews[ReviewRating.HARD].interval_days
        <= previews[ReviewRating.GOOD].interval_days
        <= previews[ReviewRating.EASY].interval_days
    )
