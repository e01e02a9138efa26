"""Decides, once per boosting round, whether the model should be scored."""

from __future__ import annotations

MAX_SCORING_DUTY_CYCLE = 0.1


def should_score(
    *,
    now: float,
    first_score_time: float,
    last_score_start: float,
    last_score_end: float,
    score_interval: float,
    initial_score_window: float,
    manual_tree_interval: int,
    trees_built: int,
    score_each_iteration: bool,
    is_final_round: bool,
) -> bool:
    """Return ``True`` when the model should be scored at ``now``.

    All times share one unit (milliseconds in the driver). Rules, first match
    wins:

    1. ``score_each_iteration`` or ``is_final_round``.
    2. ``manual_tree_interval > 0`` and ``trees_built`` is a multiple of it.
    3. Only with ``manual_tree_interval == 0``: within ``initial_score_window``
       of the first scoring pass, or more than ``score_interval`` since the last
       pass started while that pass took under 10% of the time elapsed since it
       started.
    """
    if score_each_iteration or is_final_round:
        return True
    if manual_tree_interval > 0:
        return trees_built % manual_tree_interval == 0

    if now - first_score_time < initial_score_window:
        return True
    since_last = now - last_score_start
    if since_last <= 0 or since_last <= score_interval:
        return False
    return (last_score_end - last_score_start) / since_last < MAX_SCORING_DUTY_CYCLE
